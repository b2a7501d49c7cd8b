"""FileVault: multi-tenant file storage with asynchronous processing."""

__version__ = "1.0.0"
