"""Deployment-execution agent: runs installation conventions against a shared deployment."""

__version__ = "0.1.0"
