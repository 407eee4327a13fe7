"""gitbridge command line interface."""

from gitbridge import __version__

__all__ = ["__version__"]
