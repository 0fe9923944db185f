"""Command-line interface for the nonce ledger."""

from .main import app, main

__all__ = ["app", "main"]
