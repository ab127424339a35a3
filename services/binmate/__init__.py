"""binmate: install and switch between upstream release binaries."""

__version__ = "0.1.0"
