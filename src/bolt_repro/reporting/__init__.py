"""Result persistence and tables."""

from .report import ReportWriter, comparison_to_dict, format_report_line
from .tables import create_comparison_table, format_table_for_display

__all__ = [
    "ReportWriter",
    "comparison_to_dict",
    "create_comparison_table",
    "format_report_line",
    "format_table_for_display",
]
