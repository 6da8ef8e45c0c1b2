"""Session-wallet transaction pipeline for on-chain game actions."""

__version__ = "0.1.0"
