import pytest

from cache import ProductCache, ProductFetchError
from schemas import Product

pytestmark = pytest.mark.anyio


class Loader:
    def __init__(self):
        self.calls = 0
        self.fail = False

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("sheet unreachable")
        return [Product(id=self.calls, name=f"Batch {self.calls}")]


async def test_second_call_within_ttl_is_served_from_cache(clock):
    loader = Loader()
    cache = ProductCache(loader, ttl=300, clock=clock)

    first = await cache.get_products()
    clock.advance(299)
    second = await cache.get_products()

    assert second is first
    assert loader.calls == 1


async def test_call_after_ttl_refetches(clock):
    loader = Loader()
    cache = ProductCache(loader, ttl=300, clock=clock)

    await cache.get_products()
    clock.advance(300)
    products = await cache.get_products()

    assert loader.calls == 2
    assert products[0].name == "Batch 2"


async def test_failure_clears_cache_and_next_call_retries(clock):
    loader = Loader()
    cache = ProductCache(loader, ttl=300, clock=clock)
    await cache.get_products()

    clock.advance(301)
    loader.fail = True
    with pytest.raises(ProductFetchError):
        await cache.get_products()
    assert not cache.is_fresh

    loader.fail = False
    products = await cache.get_products()
    assert products[0].name == "Batch 3"


async def test_invalidate_forces_reload(clock):
    loader = Loader()
    cache = ProductCache(loader, clock=clock)
    await cache.get_products()
    cache.invalidate()
    await cache.get_products()
    assert loader.calls == 2
