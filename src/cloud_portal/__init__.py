"""Self-service AWS account and team environment provisioning portal."""

__version__ = "0.1.0"
