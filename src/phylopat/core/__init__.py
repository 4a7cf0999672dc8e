__all__ = [
    "alignment",
    "config",
    "counts",
    "derive",
    "genetic_code",
    "pattern",
    "quality",
    "state",
]
