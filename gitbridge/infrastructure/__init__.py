"""Infrastructure layer for gitbridge."""
