"""Call id allocation and the correlation table.

Both are owned by a single AliceBob instance. Access is single-threaded
and cooperative: every mutation happens between awaits, so no lock is
needed even with many calls outstanding.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .errors import DuplicateCallIdError

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class IdAllocator:
    """Strictly increasing call ids, starting at 0.

    Shared between outgoing calls and outgoing acknowledgments.
    """

    def __init__(self) -> None:
        self._current = -1

    @property
    def current(self) -> int:
        """Last allocated id (-1 before the first allocation)."""
        return self._current

    def next(self) -> int:
        self._current += 1
        return self._current


class CorrelationTable:
    """Pending results keyed by the id of the call they answer."""

    def __init__(self) -> None:
        self._pending: dict[int, asyncio.Future[Any]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._pending

    def pending_ids(self) -> list[int]:
        """Ids of calls still waiting for an acknowledgment."""
        return list(self._pending)

    def register(self, call_id: int) -> asyncio.Future[Any]:
        """Create and store the pending result for ``call_id``.

        Must be called from within a running event loop.

        Raises:
            DuplicateCallIdError: If ``call_id`` is already pending
        """
        if call_id in self._pending:
            raise DuplicateCallIdError(call_id)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        return future

    def pop(self, call_id: int) -> asyncio.Future[Any] | None:
        """Remove and return the pending result, or None if unknown."""
        return self._pending.pop(call_id, None)

    def discard(self, call_id: int) -> None:
        """Forget a pending call without settling it."""
        self._pending.pop(call_id, None)

    def settle(
        self,
        call_id: int,
        *,
        value: Any = _UNSET,
        error: BaseException | None = None,
    ) -> bool:
        """Pop the pending result for ``call_id`` and settle it.

        Unknown or already-settled ids are logged and ignored; a late or
        duplicated acknowledgment must never break the dispatcher.

        Returns:
            True if a pending result was settled
        """
        future = self.pop(call_id)
        if future is None:
            logger.warning(f"Acknowledgment for unknown call id {call_id!r} ignored")
            return False
        if future.done():
            # Caller went away (cancelled) after the entry was looked up
            logger.debug(f"Acknowledgment for finished call id {call_id!r} ignored")
            return False
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(None if value is _UNSET else value)
        return True
