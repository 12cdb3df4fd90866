"""Mail Queue - background email delivery for the shop backend."""

__version__ = "1.0.0"
