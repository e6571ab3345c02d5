"""CRM automation rule engine."""

__version__ = "1.0.0"
