"""ForkForge API: credential lifecycle and webhook-driven provisioning."""

__version__ = "0.3.0"
