"""
Single-slot delayed actions keyed by entity id.

Scheduling a key that already has a pending action replaces it: only the
newest registration ever fires (coalescing, not queueing). Every scheduled
action either fires exactly once or is cancelled before it fires.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Dict, Optional, Union

log = logging.getLogger(__name__)

Action = Callable[[], Union[Awaitable[object], object]]


@dataclass(slots=True)
class _Pending:
    task: asyncio.Task
    action: Action


class Debouncer:
    def __init__(self, name: str = "debounce", logger: Optional[logging.Logger] = None):
        self.name = name
        self._log = logger or log
        self._pending: Dict[Hashable, _Pending] = {}

    def schedule(self, key: Hashable, delay: float, action: Action) -> None:
        """Run `action` after `delay` seconds, replacing any pending action for `key`."""
        self.cancel(key)
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_later(key, max(0.0, delay), action))
        self._pending[key] = _Pending(task=task, action=action)

    def cancel(self, key: Hashable) -> bool:
        pending = self._pending.pop(key, None)
        if pending is None:
            return False
        pending.task.cancel()
        return True

    def cancel_all(self) -> int:
        keys = list(self._pending)
        for key in keys:
            self.cancel(key)
        return len(keys)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def flush(self) -> int:
        """Run every pending action now instead of waiting for its delay."""
        drained = list(self._pending.items())
        self._pending.clear()
        for key, pending in drained:
            pending.task.cancel()
            await self._invoke(key, pending.action)
        return len(drained)

    async def _run_later(self, key: Hashable, delay: float, action: Action) -> None:
        await asyncio.sleep(delay)
        current = self._pending.get(key)
        if current is None or current.task is not asyncio.current_task():
            return
        # the slot is freed before running so the action may re-schedule its own key
        del self._pending[key]
        await self._invoke(key, action)

    async def _invoke(self, key: Hashable, action: Action) -> None:
        try:
            result = action()
            if inspect.isawaitable(result):
                await result
        except Exception:
            self._log.exception("%s action for %s failed", self.name, key)
