"""warden: supervision daemon for long-lived assistant sessions."""

__version__ = "0.1.0"
