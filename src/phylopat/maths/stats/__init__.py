__all__ = ["distribution"]
