__all__ = ["stats"]
