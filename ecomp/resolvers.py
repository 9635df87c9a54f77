"""
    ecomp.resolvers
    ~~~~~~~~~~~~~~~

    Inventory read operations on top of request-scoped loaders. Every
    resolver takes the :py:class:`~ecomp.context.UnitOfWork` of the current
    request as the first argument, so lookups made by concurrently executed
    resolvers are batched together.

"""

from functools import wraps
from itertools import chain
from typing import Any, Callable, Dict, Iterable, List, Optional

import sqlalchemy
from graphql import GraphQLError
from sqlalchemy.exc import SQLAlchemyError

from .context import Loaders, UnitOfWork
from .keys import PRICE, STOCK, PriceAndStockRange, PriceRange, StockRange
from .loader import Many, Nothing, One
from .sources import sqlalchemy as _sa
from .sources import sqlalchemy_async as _sa_async

COMPONENT_BY_ID = "component_by_id"
COMPONENTS_BY_CATEGORY = "components_by_category"
COMPONENTS_BY_MANUFACTURER = "components_by_manufacturer"
COMPONENTS_BY_PRICE_RANGE = "components_by_price_range"
COMPONENTS_BY_STOCK_RANGE = "components_by_stock_range"
COMPONENTS_BY_PRICE_AND_STOCK_RANGE = "components_by_price_and_stock_range"

Component = Dict[str, Any]


def inventory_loaders(
    engine_key: str,
    components: sqlalchemy.Table,
    *,
    async_: bool = False,
) -> Loaders:
    """Defines loaders used by inventory resolvers.

    ``components`` table should have ``id``, ``category``, ``manufacturer``,
    ``price`` and ``stock_quantity`` columns.
    """
    source = _sa_async if async_ else _sa
    range_columns = {
        PRICE: components.c.price,
        STOCK: components.c.stock_quantity,
    }
    by_range = source.RangeQuery(engine_key, components, range_columns)

    loaders = Loaders()
    loaders.define(
        COMPONENT_BY_ID,
        source.EntityQuery(engine_key, components),
        cardinality=One,
        key_type=int,
    )
    loaders.define(
        COMPONENTS_BY_CATEGORY,
        source.GroupQuery(engine_key, components, components.c.category),
        cardinality=Many,
        key_type=str,
    )
    loaders.define(
        COMPONENTS_BY_MANUFACTURER,
        source.GroupQuery(engine_key, components, components.c.manufacturer),
        cardinality=Many,
        key_type=str,
    )
    loaders.define(
        COMPONENTS_BY_PRICE_RANGE,
        by_range,
        cardinality=Many,
        key_type=PriceRange,
    )
    loaders.define(
        COMPONENTS_BY_STOCK_RANGE,
        by_range,
        cardinality=Many,
        key_type=StockRange,
    )
    loaders.define(
        COMPONENTS_BY_PRICE_AND_STOCK_RANGE,
        by_range,
        cardinality=Many,
        key_type=PriceAndStockRange,
    )
    return loaders


def graphql_errors(func: Callable) -> Callable:
    """Re-raises data access errors as :py:class:`graphql.GraphQLError`,
    keeping the original error.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise GraphQLError(
                "Failed to fetch data for {}".format(func.__name__),
                original_error=exc,
            ) from exc

    return wrapper


def _unique(components: Iterable[Component]) -> List[Component]:
    seen = set()
    result = []
    for component in components:
        if component["id"] not in seen:
            seen.add(component["id"])
            result.append(component)
    return result


def _sorted_by(
    column: str, components: Iterable[Component]
) -> List[Component]:
    return sorted(_unique(components), key=lambda c: c[column])


@graphql_errors
async def component(uow: UnitOfWork, id: int) -> Optional[Component]:
    result = await uow.loader(COMPONENT_BY_ID).load(id)
    return None if result is Nothing else result


@graphql_errors
async def components_by_ids(
    uow: UnitOfWork, ids: Iterable[int]
) -> List[Component]:
    results = await uow.loader(COMPONENT_BY_ID).load_many(ids)
    return [result for result in results if result is not Nothing]


@graphql_errors
async def components_by_category(
    uow: UnitOfWork, category: str
) -> List[Component]:
    return await uow.loader(COMPONENTS_BY_CATEGORY).load(category)


@graphql_errors
async def components_by_categories(
    uow: UnitOfWork, categories: Iterable[str]
) -> List[Component]:
    groups = await uow.loader(COMPONENTS_BY_CATEGORY).load_many(categories)
    return _sorted_by("category", chain.from_iterable(groups))


@graphql_errors
async def components_by_manufacturer(
    uow: UnitOfWork, manufacturer: str
) -> List[Component]:
    return await uow.loader(COMPONENTS_BY_MANUFACTURER).load(manufacturer)


@graphql_errors
async def components_by_manufacturers(
    uow: UnitOfWork, manufacturers: Iterable[str]
) -> List[Component]:
    loader = uow.loader(COMPONENTS_BY_MANUFACTURER)
    groups = await loader.load_many(manufacturers)
    return _sorted_by("manufacturer", chain.from_iterable(groups))


@graphql_errors
async def components_by_price_range(
    uow: UnitOfWork, min_price: Any, max_price: Any
) -> List[Component]:
    key = PriceRange(min_price, max_price)
    return await uow.loader(COMPONENTS_BY_PRICE_RANGE).load(key)


@graphql_errors
async def components_by_stock_range(
    uow: UnitOfWork, min_stock: int, max_stock: int
) -> List[Component]:
    key = StockRange(min_stock, max_stock)
    return await uow.loader(COMPONENTS_BY_STOCK_RANGE).load(key)


@graphql_errors
async def components_by_price_and_stock_range(
    uow: UnitOfWork,
    min_price: Any,
    max_price: Any,
    min_stock: int,
    max_stock: int,
) -> List[Component]:
    key = PriceAndStockRange(min_price, max_price, min_stock, max_stock)
    return await uow.loader(COMPONENTS_BY_PRICE_AND_STOCK_RANGE).load(key)
