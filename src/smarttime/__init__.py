"""SmartTime durable operation queue and batch archive."""

__version__ = "0.1.0"

__all__ = ["__version__"]
