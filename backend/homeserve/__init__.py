"""homeserve: booking lifecycle and settlement service for on-demand home services."""

__version__ = "0.1.0"
