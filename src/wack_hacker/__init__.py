"""Wack Hacker community bot: Code Mode."""

__version__ = "0.1.0"
