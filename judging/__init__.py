"""Judging & trading consensus service."""
__version__ = "1.0.0"
