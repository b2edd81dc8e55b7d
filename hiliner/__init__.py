"""Hiliner action engine: key-bound actions for the terminal file viewer."""

__version__ = "0.1.0"
