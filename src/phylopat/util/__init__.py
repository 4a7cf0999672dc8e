__all__ = ["misc", "parallel"]
