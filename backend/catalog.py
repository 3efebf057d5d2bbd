from __future__ import annotations
import re
from typing import Iterable, Optional

from schemas import Product, SelectedOptions

RELATED_LIMIT = 6


def find_by_id(products: Iterable[Product], product_id: int) -> Optional[Product]:
    return next((p for p in products if p.id == product_id), None)


def filter_by_category(products: Iterable[Product], category: str) -> list[Product]:
    return [p for p in products if p.category == category]


def filter_by_subcategory(products: Iterable[Product], category: str, subcategory: str) -> list[Product]:
    return [p for p in products if p.category == category and p.subcategory == subcategory]


def filter_by_tag(products: Iterable[Product], tag: str) -> list[Product]:
    wanted = tag.strip().lower()
    return [p for p in products if any(t.lower() == wanted for t in (p.tags or []))]


def _unique(values: Iterable[Optional[str]]) -> list[str]:
    out: list[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out


def list_categories(products: Iterable[Product]) -> list[str]:
    return _unique(p.category for p in products)


def list_subcategories(products: Iterable[Product], category: str) -> list[str]:
    return _unique(p.subcategory for p in filter_by_category(products, category))


def categories_with_subcategories(products: list[Product]) -> list[dict]:
    return [
        {"category": c, "subcategories": list_subcategories(products, c)}
        for c in list_categories(products)
    ]


def related_products(products: Iterable[Product], product: Product, limit: int = RELATED_LIMIT) -> list[Product]:
    return [p for p in filter_by_category(products, product.category) if p.id != product.id][:limit]


def matches(product: Product, query: str) -> bool:
    fields = [product.name, product.description, product.category, product.subcategory or ""]
    fields += product.sizes or []
    fields += product.colors or []
    return any(query in f.lower() for f in fields)


def search(products: Iterable[Product], query: str, limit: Optional[int] = None) -> tuple[list[Product], int]:
    """Case-insensitive substring search.

    Returns the (possibly limited) results and the total number of matches.
    """
    q = query.strip().lower()
    found = [p for p in products if matches(p, q)]
    total = len(found)
    if limit is not None and limit > 0:
        found = found[:limit]
    return found, total


def category_slug(category: str) -> str:
    return re.sub(r"\s+", "-", category.lower())


def parse_product_id_from_slug(slug: str) -> Optional[int]:
    match = re.search(r"-(\d+)$", slug)
    return int(match.group(1)) if match else None


def default_options(product: Product, chosen: Optional[SelectedOptions] = None) -> SelectedOptions:
    # Product cards add the first size / colour unless one was picked
    chosen = chosen or SelectedOptions()
    return SelectedOptions(
        size=chosen.size or (product.sizes[0] if product.sizes else None),
        color=chosen.color or (product.colors[0] if product.colors else None),
    )
