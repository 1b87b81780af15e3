"""Gebeya peer-to-peer marketplace API."""

__version__ = "0.1.0"
