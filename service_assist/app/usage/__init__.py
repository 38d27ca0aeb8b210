"""Usage accounting."""

from .accountant import UsageAccountant, utc_today

__all__ = ["UsageAccountant", "utc_today"]
