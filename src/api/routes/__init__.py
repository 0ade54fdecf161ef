"""HTTP routers."""

from . import admin, claims, export

__all__ = ["admin", "claims", "export"]
