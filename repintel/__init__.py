"""Reputation Intel — multi-source reputation scanning for social and on-chain identities."""

__version__ = "1.0.0"
