from __future__ import annotations
import logging
import time
from typing import Awaitable, Callable, Optional

from schemas import Product

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60

ProductLoader = Callable[[], Awaitable[list[Product]]]


class ProductFetchError(Exception):
    """The product sheet could not be fetched or decoded."""


class ProductCache:
    """Process-wide memo of the last parsed product list.

    One value, valid for ``ttl`` seconds after it was loaded. A failed load
    clears the cache so the next call starts over. Concurrent calls on a cold
    cache are not coalesced; each one runs the loader.
    """

    def __init__(self, loader: ProductLoader, ttl: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._products: Optional[list[Product]] = None
        self._loaded_at: Optional[float] = None

    @property
    def is_fresh(self) -> bool:
        if self._products is None or self._loaded_at is None:
            return False
        return self._clock() - self._loaded_at < self._ttl

    def invalidate(self) -> None:
        self._products = None
        self._loaded_at = None

    async def get_products(self) -> list[Product]:
        if self.is_fresh:
            return self._products  # type: ignore[return-value]

        try:
            products = await self._loader()
        except Exception as e:
            self.invalidate()
            logger.exception("Failed to load products")
            raise ProductFetchError(str(e)) from e

        self._products = products
        self._loaded_at = self._clock()
        logger.info("Loaded %d products", len(products))
        return products
