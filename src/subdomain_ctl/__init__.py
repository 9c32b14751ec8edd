"""Declarative community subdomain management."""

__version__ = "0.1.0"
