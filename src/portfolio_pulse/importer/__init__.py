"""Statement import: format detection, parsing and reconciliation."""

from .detect import SheetFormat, find_header
from .parser import ImportRow, ParsedSheet, file_format_for, parse, parse_date
from .reconcile import ReconcileResult, fold

__all__ = [
    "SheetFormat",
    "find_header",
    "ImportRow",
    "ParsedSheet",
    "file_format_for",
    "parse",
    "parse_date",
    "ReconcileResult",
    "fold",
]
