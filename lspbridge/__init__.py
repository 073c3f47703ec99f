"""Bridge between a text editor and a Language Server Protocol backend."""

__version__ = "0.1.0"
