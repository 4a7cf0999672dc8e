__all__ = ["expression", "model_info"]
