from __future__ import annotations
import asyncio
import logging
from collections import OrderedDict
from typing import Callable

from checkout import CheckoutFlow
from sheets import OrderSink
from storage import MemoryStorage, MongoStorage, Storage
from store import DEFAULT_RULES, CouponRules, load_session

logger = logging.getLogger(__name__)

StorageFactory = Callable[[str], Storage]


def memory_storage_factory() -> StorageFactory:
    scopes: dict[str, MemoryStorage] = {}

    def factory(scope: str) -> Storage:
        if scope not in scopes:
            scopes[scope] = MemoryStorage()
        return scopes[scope]

    return factory


def mongo_storage_factory() -> StorageFactory:
    return MongoStorage


class SessionRegistry:
    """Live checkout flows (and their stores) by session id.

    A session is rebuilt from its session-scoped storage the first time it is
    seen in this process. Concurrent first requests for one id share a single
    load. At most `max_sessions` flows stay in memory; the least recently used
    idle one is dropped and rebuilt from storage on its next request.
    """

    def __init__(self, storage_for: StorageFactory, sink: OrderSink, rules: CouponRules = DEFAULT_RULES,
                 max_sessions: int = 1000):
        self.storage_for = storage_for
        self.sink = sink
        self.rules = rules
        self.max_sessions = max_sessions
        self._flows: OrderedDict[str, CheckoutFlow] = OrderedDict()
        self._loading: dict[str, asyncio.Lock] = {}

    def local_storage(self, sid: str) -> Storage:
        return self.storage_for(f"local:{sid}")

    def session_storage(self, sid: str) -> Storage:
        return self.storage_for(f"session:{sid}")

    async def get(self, sid: str) -> CheckoutFlow:
        flow = self._flows.get(sid)
        if flow is not None:
            self._flows.move_to_end(sid)
            return flow

        lock = self._loading.setdefault(sid, asyncio.Lock())
        try:
            async with lock:
                flow = self._flows.get(sid)
                if flow is None:
                    session = self.session_storage(sid)
                    store = await load_session(session, self.rules)
                    flow = await CheckoutFlow.open(store, self.local_storage(sid), session, self.sink)
                    self._flows[sid] = flow
                    self._evict(keep=sid)
        finally:
            if self._loading.get(sid) is lock and not lock.locked():
                del self._loading[sid]
        return flow

    def _evict(self, keep: str) -> None:
        idle = [sid for sid, flow in self._flows.items() if sid != keep and not flow.is_submitting]
        for sid in idle[:max(0, len(self._flows) - self.max_sessions)]:
            logger.debug("Evicting idle session %s", sid)
            del self._flows[sid]

    def __len__(self) -> int:
        return len(self._flows)

    def drop(self, sid: str) -> None:
        self._flows.pop(sid, None)
