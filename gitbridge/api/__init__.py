from gitbridge.api.git_http import GitHTTPBridge

__all__ = ["GitHTTPBridge"]
