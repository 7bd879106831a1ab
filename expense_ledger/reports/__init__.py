"""Reporting package."""

from expense_ledger.reports.builder import ReportBuilder

__all__ = ["ReportBuilder"]
