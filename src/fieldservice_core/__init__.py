"""Request authorization core for a multi-tenant field-service system."""

__version__ = "0.1.0"
