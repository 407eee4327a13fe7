"""gitbridge - git smart HTTP server with push hooks"""

__version__ = "0.1.0"
