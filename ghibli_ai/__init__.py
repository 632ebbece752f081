"""Backend for the Ghibli-style image generator."""

__version__ = "1.8.0"
