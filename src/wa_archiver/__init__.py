"""Passive WhatsApp message archiver."""

__version__ = "0.3.0"
