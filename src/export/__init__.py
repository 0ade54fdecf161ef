"""Claim exports: query parameter parsing and document rendering."""

from .params import ExportFormat, ExportParamError, ExportRequest, parse_export_request
from .render import HEADERS, export_row, render_export, render_pdf, render_xlsx

__all__ = [
    "ExportFormat",
    "ExportParamError",
    "ExportRequest",
    "parse_export_request",
    "HEADERS",
    "export_row",
    "render_export",
    "render_pdf",
    "render_xlsx",
]
