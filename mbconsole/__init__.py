"""Operator console for a Modbus register access service."""

__version__ = "0.1.0"
