"""Error types raised by the profile engine.

``StoreError`` is a system fault. ``NoMatchError`` and ``EmptyRangeError`` are
business conditions the transport layer renders as an empty state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qan.models import TimeWindow


class QanError(Exception):
    """Base class for query analytics errors."""


class StoreError(QanError):
    """A metric store query failed. Never retried here."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NoMatchError(QanError):
    def __init__(self, search: str) -> None:
        self.search = search
        super().__init__(
            f"None of the queries in the selected time range match '{search}'"
        )


class EmptyRangeError(QanError):
    def __init__(self, instance_id: int, window: TimeWindow) -> None:
        self.instance_id = instance_id
        self.window = window
        super().__init__(
            f"No query classes for instance {instance_id} between "
            f"{window.begin} and {window.end}. "
            "Please check whether the agent settings match the recommended ones."
        )
