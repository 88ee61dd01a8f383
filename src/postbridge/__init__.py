"""Postbridge: reliable delivery of saved content to remote destinations."""

__version__ = "0.1.0"
