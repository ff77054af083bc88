"""Aftercare — surgical recovery companion."""

__version__ = "0.1.0"
