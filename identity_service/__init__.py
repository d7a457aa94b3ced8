"""Authentication, session and audit service."""

__version__ = "0.1.0"
