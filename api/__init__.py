"""Gift Claim Service HTTP API."""

__version__ = "3.0.0"
