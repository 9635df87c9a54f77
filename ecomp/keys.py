"""
    ecomp.keys
    ~~~~~~~~~~

    Composite keys for range lookups. Keys are frozen dataclasses, so
    they are hashable and compare by value, which is what the loader
    relies on to coalesce equal requests.

    Bounds are inclusive on both ends. A range with the lower bound greater
    than the upper one is valid and contains nothing.

"""

import dataclasses
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Tuple, Union

Number = Union[int, float, Decimal]

Bound = Tuple[str, Number, Number]

PRICE = "price"
STOCK = "stock"


class RangeKey:
    def bounds(self) -> Tuple[Bound, ...]:
        raise NotImplementedError(type(self))

    def contains(
        self,
        values: Mapping[str, Number],
        *,
        coerce: Optional[Callable[[str, Any], Any]] = None,
    ) -> bool:
        """Checks values of every dimension against the key's bounds.

        :param coerce: function of dimension name and bound, converts bounds
                       to the type of the values
        """
        for dimension, low, high in self.bounds():
            if coerce is not None:
                low = coerce(dimension, low)
                high = coerce(dimension, high)
            value = values[dimension]
            if value is None or not low <= value <= high:
                return False
        return True


@dataclasses.dataclass(frozen=True)
class PriceRange(RangeKey):
    min_price: Number
    max_price: Number

    def bounds(self) -> Tuple[Bound, ...]:
        return ((PRICE, self.min_price, self.max_price),)


@dataclasses.dataclass(frozen=True)
class StockRange(RangeKey):
    min_stock: int
    max_stock: int

    def bounds(self) -> Tuple[Bound, ...]:
        return ((STOCK, self.min_stock, self.max_stock),)


@dataclasses.dataclass(frozen=True)
class PriceAndStockRange(RangeKey):
    min_price: Number
    max_price: Number
    min_stock: int
    max_stock: int

    def bounds(self) -> Tuple[Bound, ...]:
        return (
            (PRICE, self.min_price, self.max_price),
            (STOCK, self.min_stock, self.max_stock),
        )
