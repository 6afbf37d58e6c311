"""Driver location history and zombie detection."""

__version__ = "0.1.0"
