"""
Product sheet decoding.

The product sheet is a plain grid of strings. Row 0 holds the header names and
every following row is one product. Decoding is best effort: a bad cell falls
back to a per-field default instead of failing the row, and a bad row never
fails the catalog.
"""
from __future__ import annotations
import logging
import re
from typing import Any, Optional, Sequence

from schemas import CommentRating, Product

logger = logging.getLogger(__name__)

RATING_MARKER = "#rating:"

# normalised header -> Product field
HEADER_FIELDS = {
    "id": "id",
    "name": "name",
    "price": "price",
    "description": "description",
    "images": "images",
    "rating": "rating",
    "category": "category",
    "subcategory": "subcategory",
    "subtitle": "subtitle",
    "discountamount": "discount_amount",
    "sizes": "sizes",
    "colors": "colors",
    "videos": "videos",
    "itemsleft": "items_left",
    "commentsandratings": "comments_and_ratings",
    "tags": "tags",
}

_FLOAT_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")
_INT_RE = re.compile(r"^[+-]?\d+")


def normalize_header(name: str) -> str:
    return re.sub(r"[\s_\-]", "", str(name)).lower()


def parse_float(value: Any) -> Optional[float]:
    """Leading-number parse, ``None`` when the cell holds no number."""
    match = _FLOAT_RE.match(str(value or "").strip().replace(",", ""))
    return float(match.group(0)) if match else None


def parse_int(value: Any) -> Optional[int]:
    match = _INT_RE.match(str(value or "").strip().replace(",", ""))
    return int(match.group(0)) if match else None


def split_list(value: Any) -> list[str]:
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


def optional_list(value: Any) -> Optional[list[str]]:
    return split_list(value) or None


def optional_text(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def parse_comments(value: Any) -> list[CommentRating]:
    """Decode ``<comment>#rating:<number>, ...`` into reviews.

    Entries whose comment is blank are dropped; a missing rating reads as 0.
    """
    reviews = []
    for entry in str(value or "").split(","):
        comment, _, rating = entry.partition(RATING_MARKER)
        comment = comment.strip()
        if not comment:
            continue
        score = parse_float(rating) or 0.0
        reviews.append(CommentRating(comment=comment, rating=min(max(score, 0.0), 5.0)))
    return reviews


def average_rating(reviews: Sequence[CommentRating]) -> float:
    if not reviews:
        return 0.0
    return round(sum(r.rating for r in reviews) / len(reviews), 2)


def row_to_record(headers: Sequence[str], row: Sequence[Any]) -> dict[str, str]:
    record = {}
    for index, header in enumerate(headers):
        field = HEADER_FIELDS.get(normalize_header(header))
        if field is None:
            continue
        cell = row[index] if index < len(row) else ""
        record[field] = "" if cell is None else str(cell)
    return record


def parse_product(record: dict[str, str]) -> Product:
    reviews = parse_comments(record.get("comments_and_ratings"))
    rating = parse_float(record.get("rating"))
    if rating is None:
        rating = average_rating(reviews)

    return Product(
        id=parse_int(record.get("id")) or 0,
        name=record.get("name", "").strip(),
        price=max(parse_float(record.get("price")) or 0.0, 0.0),
        description=record.get("description", "").strip(),
        images=split_list(record.get("images")),
        rating=min(max(rating, 0.0), 5.0),
        category=record.get("category", "").strip(),
        subcategory=optional_text(record.get("subcategory")),
        subtitle=optional_text(record.get("subtitle")),
        discount_amount=parse_float(record.get("discount_amount")),
        sizes=optional_list(record.get("sizes")),
        colors=optional_list(record.get("colors")),
        videos=optional_list(record.get("videos")),
        items_left=parse_int(record.get("items_left")),
        comments_and_ratings=reviews or None,
        tags=optional_list(record.get("tags")),
    )


def parse_products(grid: Sequence[Sequence[Any]]) -> list[Product]:
    if not grid:
        return []
    headers = [str(h) for h in grid[0]]
    products: list[Product] = []
    seen: set[int] = set()
    for line, row in enumerate(grid[1:], start=2):
        record = row_to_record(headers, row)
        if not record.get("id", "").strip():
            continue
        product = parse_product(record)
        if product.id in seen:
            logger.warning("Skipping duplicate product id %s on sheet row %d", product.id, line)
            continue
        seen.add(product.id)
        products.append(product)
    return products
