"""
Vehicle Finance Ledger

Installment coverage and debt accounting for daily-cadence vehicle loans,
with a 30-day logical calendar, skipped-date handling and immutable debt
snapshots on every payment.
"""

__version__ = "1.0.0"
