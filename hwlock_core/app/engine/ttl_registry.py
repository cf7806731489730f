# app/engine/ttl_registry.py
# -*- coding: utf-8 -*-
"""
TTL registry + ephemeral exchange.

TTLRegistry is a lock-guarded key -> (value, expiry) map that owns its own
periodic sweep task. Instances are created by the app factory and injected,
so tests control the clock and never share state.

EphemeralExchange is the one-time handoff store built on it: entries live
at most EXCHANGE_MAX_TTL_SECONDS and a read consumes them.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from config import EXCHANGE_MAX_TTL_SECONDS, EXCHANGE_SWEEP_SECONDS
from app.utils.generator import generate_exchange_key

logger = logging.getLogger(__name__)


class TTLRegistry:
    def __init__(self, default_ttl: float, sweep_interval: float = EXCHANGE_SWEEP_SECONDS,
                 clock: Callable[[], float] = time.monotonic, name: str = "ttl-registry"):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[Any, float]] = {}
        self._task: Optional[asyncio.Task] = None

    def __len__(self):
        with self._lock:
            return len(self._items)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            self._items[key] = (value, expires)

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires = item
            if expires <= now:
                del self._items[key]
                return None
            return value

    def pop(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._items.pop(key, None)
        if item is None or item[1] <= now:
            return None
        return item[0]

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, e) in self._items.items() if e <= now]
            for k in expired:
                del self._items[k]
        if expired:
            logger.debug("%s swept %d expired entries", self.name, len(expired))
        return len(expired)

    # -----------------------
    # Background sweep
    # -----------------------
    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._sweep_loop())
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class EphemeralExchange:
    """One-time binary handoff without persistence."""

    def __init__(self, registry: Optional[TTLRegistry] = None, max_ttl: float = EXCHANGE_MAX_TTL_SECONDS):
        self.max_ttl = max_ttl
        if registry is None:
            registry = TTLRegistry(default_ttl=max_ttl, name="ephemeral-exchange")
        self.registry = registry

    def put(self, payload: bytes, ttl: Optional[float] = None) -> str:
        ttl = self.max_ttl if ttl is None else min(ttl, self.max_ttl)
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        key = generate_exchange_key()
        self.registry.set(key, payload, ttl)
        return key

    def take(self, key: str) -> Optional[bytes]:
        return self.registry.pop(key)
