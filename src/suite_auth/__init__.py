"""Suite Auth: authentication and session lifecycle service."""

__version__ = "1.0.0"
