"""
Quota module: monthly usage accounting.

Public API:
- QuotaLedger: check_and_admit() before moderation, record_usage() after
- Admitted, QuotaExceeded: admission results
- billing_period(): calendar-month window for a date
"""

from app.quota.ledger import (
    Admitted,
    QuotaExceeded,
    QuotaLedger,
    billing_period,
    local_date,
    resolve_timezone,
)

__all__ = [
    "Admitted",
    "QuotaExceeded",
    "QuotaLedger",
    "billing_period",
    "local_date",
    "resolve_timezone",
]
