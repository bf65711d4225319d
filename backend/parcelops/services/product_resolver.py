# Overview: Resolves free-text order descriptions to catalog products and quantities.

"""
Carrier labels carry the ordered items as free text, e.g.

    "[2 x Sunset Lamp - Large] [1 x Snow Lamp]"
    "3 pcs Aurora Lamp"

The order service only needs `resolve(description) -> [ResolvedProduct]`.
Any object with that method can be registered on the app as
app.extensions["product_resolver"]; CatalogProductResolver is the default.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Product


DEFAULT_VARIANT = "Default"

_BRACKET_BLOCK = re.compile(r"\[\s*([^\[\]]+?)\s*\]")
_QTY_X_NAME = re.compile(r"(\d+)\s*x\s*(.*?)(?:\s*-\s*([^-]*?)(?:\s*-|$)|$)", re.IGNORECASE)
_PLAIN_PATTERNS = (
    _QTY_X_NAME,
    re.compile(r"(\d+)\s*(?:pcs?|pieces?|units?)\s+(.*?)(?:\s*-\s*([^-]*?)(?:\s*-|$)|$)", re.IGNORECASE),
    re.compile(r"(\d+)\s+(.*?)(?:\s*-\s*([^-]*?)(?:\s*-|$)|$)", re.IGNORECASE),
)
_TRADEMARKS = re.compile(r"[™®©]")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class ParsedItem:
    product: str
    variant: str
    quantity: int

    @property
    def full_name(self) -> str:
        if self.variant == DEFAULT_VARIANT:
            return self.product
        return f"{self.product} - {self.variant}"


@dataclass(frozen=True)
class ResolvedProduct:
    product_id: int
    quantity: int
    label: str


def _item_from_match(match) -> ParsedItem:
    variant = (match.group(3) or "").strip() or DEFAULT_VARIANT
    return ParsedItem(
        product=match.group(2).strip(),
        variant=variant,
        quantity=int(match.group(1)),
    )


def parse_description(description: str | None) -> list[ParsedItem]:
    """
    Split a label description into (product, variant, quantity) items.

    Bracketed blocks win; otherwise the first plain pattern that matches is
    used; otherwise the whole text is one item with quantity 1.
    """
    text = (description or "").strip()
    if not text:
        return []

    blocks = _BRACKET_BLOCK.findall(text)
    if blocks:
        items = []
        for block in blocks:
            match = _QTY_X_NAME.search(block.strip())
            if match:
                items.append(_item_from_match(match))
        return items

    for pattern in _PLAIN_PATTERNS:
        match = pattern.search(text)
        if match:
            return [_item_from_match(match)]

    return [ParsedItem(product=text, variant=DEFAULT_VARIANT, quantity=1)]


def normalize_name(value: str) -> str:
    value = _TRADEMARKS.sub("", value.lower())
    value = _NON_ALNUM.sub(" ", value)
    return " ".join(value.split())


def _words(value: str) -> list[str]:
    return [w for w in normalize_name(value).split(" ") if len(w) > 2]


def _word_overlap(candidate: str, wanted: str) -> bool:
    candidate_words = _words(candidate)
    wanted_words = _words(wanted)
    if not candidate_words or not wanted_words:
        return False
    overlap = [
        word for word in candidate_words
        if any(word in other or other in word for other in wanted_words)
    ]
    return len(overlap) >= max(1, min(len(candidate_words), len(wanted_words)) * 0.5)


def match_product(products: list[Product], item: ParsedItem) -> Product | None:
    """Most specific match first: exact, normalized, containment, word overlap."""
    full = item.full_name.lower()
    base = item.product.lower()
    norm_full = normalize_name(item.full_name)
    norm_base = normalize_name(item.product)

    checks = (
        lambda p: p.name.lower() == full,
        lambda p: normalize_name(p.name) == norm_full,
        lambda p: p.name.lower() == base,
        lambda p: normalize_name(p.name) == norm_base,
        lambda p: p.name.lower() in base or base in p.name.lower(),
        lambda p: normalize_name(p.name) in norm_base or norm_base in normalize_name(p.name),
        lambda p: _word_overlap(p.name, item.product),
    )
    for check in checks:
        for product in products:
            if check(product):
                return product
    return None


class CatalogProductResolver:
    """Matches parsed label items against the products table."""

    def resolve(self, description: str | None) -> list[ResolvedProduct]:
        items = parse_description(description)
        if not items:
            return []

        products = db.session.query(Product).order_by(Product.id.asc()).all()
        resolved = []
        for item in items:
            product = match_product(products, item)
            if product is None:
                current_app.logger.warning("No catalog product matches %r", item.full_name)
                continue
            resolved.append(ResolvedProduct(product.id, item.quantity, item.full_name))
        return resolved


def get_resolver():
    resolver = current_app.extensions.get("product_resolver")
    if resolver is None:
        resolver = CatalogProductResolver()
        current_app.extensions["product_resolver"] = resolver
    return resolver
