"""tether - drive assistant runs to completion with hot-swappable tools."""

__version__ = "0.1.0"
