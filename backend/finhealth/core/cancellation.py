from typing import Protocol

from finhealth.core.exceptions import AnalyticsCancelledError


class CancelEvent(Protocol):
    """Anything with ``is_set()``: ``threading.Event`` and ``asyncio.Event`` both qualify."""

    def is_set(self) -> bool: ...


def raise_if_cancelled(cancel_event: CancelEvent | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise AnalyticsCancelledError()
