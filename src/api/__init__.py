"""HTTP surface of the reimbursement claim service."""

from .app import create_app, main

__all__ = ["create_app", "main"]
