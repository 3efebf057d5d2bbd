import anyio
import pytest

from sessions import SessionRegistry
from storage import MemoryStorage
from store import AddToCart, save_session

pytestmark = pytest.mark.anyio


class SlowStorage(MemoryStorage):
    """Yields to the event loop on every read, like a network-backed store."""

    async def get(self, key):
        await anyio.sleep(0)
        return await super().get(key)


def slow_storage_factory():
    scopes = {}

    def factory(scope):
        return scopes.setdefault(scope, SlowStorage())

    return factory


async def test_overlapping_first_requests_share_one_flow(sink, tee):
    registry = SessionRegistry(slow_storage_factory(), sink)
    flows = []

    async def add():
        flow = await registry.get("s1")
        flow.store.dispatch(AddToCart(product=tee))
        flows.append(flow)

    async with anyio.create_task_group() as tg:
        tg.start_soon(add)
        tg.start_soon(add)

    assert flows[0] is flows[1]
    live = await registry.get("s1")
    assert [item.quantity for item in live.store.state.cart_items] == [2]


async def test_least_recently_used_session_is_evicted(sink):
    registry = SessionRegistry(slow_storage_factory(), sink, max_sessions=2)
    first = await registry.get("a")
    await registry.get("b")
    await registry.get("a")
    await registry.get("c")

    assert len(registry) == 2
    assert await registry.get("a") is first
    assert "b" not in registry._flows
    assert len(registry) == 2


async def test_session_in_the_middle_of_submitting_is_kept(sink):
    registry = SessionRegistry(slow_storage_factory(), sink, max_sessions=1)
    busy = await registry.get("a")
    busy.is_submitting = True
    await registry.get("b")

    assert await registry.get("a") is busy
    assert "b" in registry._flows


async def test_evicted_session_is_rebuilt_from_storage(sink, tee):
    registry = SessionRegistry(slow_storage_factory(), sink, max_sessions=1)
    flow = await registry.get("a")
    flow.store.dispatch(AddToCart(product=tee))
    await save_session(flow.session, flow.store.state)

    await registry.get("b")
    rebuilt = await registry.get("a")

    assert rebuilt is not flow
    assert rebuilt.store.state.cart_items[0].id == tee.id
