"""Tax year deadline and progress calculators."""

from taxledger.tax.deadlines import get_tax_deadlines, get_tax_year_progress, pending_tax_year

__all__ = ["get_tax_deadlines", "get_tax_year_progress", "pending_tax_year"]
