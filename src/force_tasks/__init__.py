"""Task coordination for Force Fitness contributors."""

__version__ = "0.1.0"

__all__ = ["__version__"]
