"""
Command Dispatch Module

Cross-view requests (open a reading unit, show the annotations panel)
are sent as explicit command objects to registered handlers instead of
being broadcast as global events.
"""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..models.verses import ReadingUnitRef
from .verse_store_service import HIZB_COUNT, QUARTERS_PER_HIZB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigateToReading:
    """Open a reading unit, optionally scrolling to one of its rows."""

    hizb: int
    quarter: int
    row_id: int | None = None


@dataclass(frozen=True)
class OpenAnnotationsPanel:
    """Show the annotations list, filtered to one type or "all"."""

    tab: str = "all"


Handler = Callable[[Any], Any]


class CommandDispatcher:
    """Routes each command type to exactly one handler."""

    def __init__(self):
        self._handlers: dict[type, Handler] = {}

    def register(self, command_type: type, handler: Handler) -> None:
        if command_type in self._handlers:
            logger.warning(f"Replacing handler for {command_type.__name__}")
        self._handlers[command_type] = handler

    def unregister(self, command_type: type) -> None:
        self._handlers.pop(command_type, None)

    async def dispatch(self, command: Any) -> Any:
        """
        Run the handler registered for the command's type.

        Raises:
            LookupError: If no handler is registered for the command type
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            raise LookupError(f"No handler registered for {type(command).__name__}")

        logger.info(f"Dispatching {command}")
        result = handler(command)
        if inspect.isawaitable(result):
            result = await result
        return result


def next_unit(hizb: int, quarter: int) -> ReadingUnitRef | None:
    """The reading unit after (hizb, quarter), or None at the end of the Quran."""
    if quarter < QUARTERS_PER_HIZB:
        return ReadingUnitRef(hizb=hizb, quarter=quarter + 1)
    if hizb < HIZB_COUNT:
        return ReadingUnitRef(hizb=hizb + 1, quarter=1)
    return None


def previous_unit(hizb: int, quarter: int) -> ReadingUnitRef | None:
    """The reading unit before (hizb, quarter), or None at the start."""
    if quarter > 1:
        return ReadingUnitRef(hizb=hizb, quarter=quarter - 1)
    if hizb > 1:
        return ReadingUnitRef(hizb=hizb - 1, quarter=QUARTERS_PER_HIZB)
    return None
