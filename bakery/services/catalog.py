from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from bakery.models import Product, ProductConversion
from bakery.utils import norm_key


@dataclass(frozen=True)
class ProductPair:
    whole_product_id: str
    slices_product_id: str
    conversion_factor: int

    def is_whole(self, product_id: str) -> bool:
        return product_id == self.whole_product_id


def resolve_pair(product_id: str, conversions: Iterable[ProductConversion]) -> Optional[ProductPair]:
    """
    Whole/slice pairing for a product, or None for an "other units" product.

    The product may be either side of the conversion.
    """
    convs = list(conversions)
    for c in convs:
        if c.from_product_id == product_id:
            return ProductPair(c.from_product_id, c.to_product_id, int(c.conversion_factor))
    for c in convs:
        if c.to_product_id == product_id:
            return ProductPair(c.from_product_id, c.to_product_id, int(c.conversion_factor))
    return None


class ConversionResolver:
    """Memoised resolve_pair for one reconciliation pass."""

    def __init__(self, conversions: Iterable[ProductConversion]):
        self._conversions = list(conversions)
        self._cache: dict[str, Optional[ProductPair]] = {}

    def __call__(self, product_id: str) -> Optional[ProductPair]:
        if product_id not in self._cache:
            self._cache[product_id] = resolve_pair(product_id, self._conversions)
        return self._cache[product_id]

    def factor_for(self, product_id: str) -> int:
        pair = self(product_id)
        return pair.conversion_factor if pair else 1


@dataclass(frozen=True)
class Found:
    product: Product


@dataclass(frozen=True)
class NotFound:
    key: str


Lookup = Union[Found, NotFound]


class ProductCatalog:
    def __init__(self, products: Iterable[Product]):
        self._by_id: dict[str, Product] = {}
        self._by_name_unit: dict[tuple[str, str], Product] = {}
        self._by_name: dict[str, list[Product]] = {}
        for p in products:
            self._by_id[p.id] = p
            self._by_name_unit.setdefault((norm_key(p.name), norm_key(p.unit)), p)
            self._by_name.setdefault(norm_key(p.name), []).append(p)

    def get(self, product_id: Optional[str]) -> Lookup:
        if product_id and product_id in self._by_id:
            return Found(self._by_id[product_id])
        return NotFound(str(product_id))

    def find(self, name: Optional[str], unit: Optional[str] = None) -> Lookup:
        """Match by name and unit, falling back to the first product with that name."""
        n = norm_key(name)
        if not n:
            return NotFound("")
        if unit:
            p = self._by_name_unit.get((n, norm_key(unit)))
            if p is not None:
                return Found(p)
        same = self._by_name.get(n)
        if same:
            return Found(same[0])
        return NotFound(n if not unit else f"{n} ({norm_key(unit)})")

    def same_name(self, product: Product) -> list[Product]:
        return [p for p in self._by_name.get(norm_key(product.name), []) if p.id != product.id]

    def __iter__(self):
        return iter(self._by_id.values())
