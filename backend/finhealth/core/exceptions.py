"""Exception types raised by the analytics engine."""

from datetime import date

from fastapi import HTTPException, status


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class FxRateNotFoundError(LookupError):
    def __init__(self, currency_code: str, day: date):
        self.currency_code = currency_code
        self.day = day
        super().__init__(f"No FX rate for {currency_code} on {day.isoformat()}.")


class LedgerCursorError(ValueError):
    pass


class AnalyticsCancelledError(Exception):
    def __init__(self, detail: str = "Analytics computation was cancelled."):
        super().__init__(detail)
