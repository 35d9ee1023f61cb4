"""Webpage design snapshot → framework component service."""

__version__ = "0.1.0"
