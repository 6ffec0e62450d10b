"""Conduit: workflow automation engine and calendar/email provider sync layer."""

__version__ = "0.1.0"
