import asyncio
from decimal import Decimal

import pytest

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import Integer, Unicode, Float, Numeric
from sqlalchemy.schema import MetaData, Table, Column

from ecomp.context import Loaders, UnitOfWork
from ecomp.keys import (
    PRICE,
    STOCK,
    PriceAndStockRange,
    PriceRange,
    StockRange,
)
from ecomp.loader import Many, Nothing, One
from ecomp.sources.sqlalchemy import EntityQuery, GroupQuery, RangeQuery


SA_ENGINE_KEY = "sa-engine"

metadata = MetaData()

components_table = Table(
    "components",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Unicode),
    Column("category", Unicode),
    Column("manufacturer", Unicode),
    Column("price", Float),
    Column("stock_quantity", Integer),
)

COMPONENTS = [
    {
        "id": 1,
        "name": "NE555",
        "category": "ic",
        "manufacturer": "Texas Instruments",
        "price": 0.5,
        "stock_quantity": 120,
    },
    {
        "id": 2,
        "name": "LM358",
        "category": "ic",
        "manufacturer": "STMicroelectronics",
        "price": 0.35,
        "stock_quantity": 0,
    },
    {
        "id": 3,
        "name": "100nF X7R",
        "category": "capacitor",
        "manufacturer": "Murata",
        "price": 0.02,
        "stock_quantity": 5000,
    },
    {
        "id": 4,
        "name": "10uF electrolytic",
        "category": "capacitor",
        "manufacturer": "Panasonic",
        "price": 0.1,
        "stock_quantity": 800,
    },
    {
        "id": 5,
        "name": "ATmega328P",
        "category": "microcontroller",
        "manufacturer": "Microchip",
        "price": 2.5,
        "stock_quantity": 40,
    },
    {
        "id": 6,
        "name": "TL072",
        "category": "ic",
        "manufacturer": "Texas Instruments",
        "price": 0.6,
        "stock_quantity": 75,
    },
]


def setup_db(db_engine):
    metadata.create_all(db_engine)
    with db_engine.begin() as connection:
        connection.execute(components_table.insert(), COMPONENTS)


def ids(components):
    return [c["id"] for c in components]


@pytest.fixture(name="db_engine")
def db_engine_fixture():
    db_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    setup_db(db_engine)
    yield db_engine
    db_engine.dispose()


def range_columns():
    return {
        PRICE: components_table.c.price,
        STOCK: components_table.c.stock_quantity,
    }


def test_entity_query(db_engine):
    query = EntityQuery(SA_ENGINE_KEY, components_table)
    result = query({SA_ENGINE_KEY: db_engine}, [3, 7, 1])
    assert result == {1: COMPONENTS[0], 3: COMPONENTS[2]}


def test_group_query(db_engine):
    query = GroupQuery(
        SA_ENGINE_KEY, components_table, components_table.c.category
    )
    result = query({SA_ENGINE_KEY: db_engine}, ["ic", "resistor"])
    assert list(result) == ["ic"]
    assert sorted(ids(result["ic"])) == [1, 2, 6]


def test_range_query_overlapping_keys(db_engine):
    query = RangeQuery(SA_ENGINE_KEY, components_table, range_columns())
    cheap = PriceRange(0, 0.1)
    mid = PriceRange(0.1, 0.6)
    empty = PriceRange(100, 200)
    result = query({SA_ENGINE_KEY: db_engine}, [cheap, mid, empty])

    assert sorted(ids(result[cheap])) == [3, 4]
    assert sorted(ids(result[mid])) == [1, 2, 4, 6]
    assert empty not in result


def test_range_query_price_and_stock(db_engine):
    query = RangeQuery(SA_ENGINE_KEY, components_table, range_columns())
    key = PriceAndStockRange(0.3, 1, 50, 1000)
    stock_key = StockRange(0, 50)
    result = query({SA_ENGINE_KEY: db_engine}, [key, stock_key])

    assert sorted(ids(result[key])) == [1, 6]
    assert sorted(ids(result[stock_key])) == [2, 5]


def test_empty_keys():
    # engine is not touched
    assert EntityQuery(SA_ENGINE_KEY, components_table)({}, []) == {}


def test_repr():
    query = EntityQuery(SA_ENGINE_KEY, components_table)
    assert repr(query).startswith(
        "<ecomp.sources.sqlalchemy.EntityQuery: engine_key='sa-engine', "
        "from_clause=Table('components'"
    )


@pytest.mark.asyncio
async def test_loaders(db_engine):
    loaders = Loaders()
    loaders.define(
        "component",
        EntityQuery(SA_ENGINE_KEY, components_table),
        cardinality=One,
    )
    loaders.define(
        "by_manufacturer",
        GroupQuery(
            SA_ENGINE_KEY, components_table, components_table.c.manufacturer
        ),
        cardinality=Many,
    )

    async with UnitOfWork(loaders, {SA_ENGINE_KEY: db_engine}) as uow:
        component = uow.loader("component")
        by_manufacturer = uow.loader("by_manufacturer")
        first, missing, ti, unknown, again = await asyncio.gather(
            component.load(5),
            component.load(42),
            by_manufacturer.load("Texas Instruments"),
            by_manufacturer.load("Vishay"),
            component.load(5),
        )

    assert first == COMPONENTS[4]
    assert again is first
    assert missing is Nothing
    assert sorted(ids(ti)) == [1, 6]
    assert unknown == []


decimal_metadata = MetaData()

decimal_components_table = Table(
    "decimal_components",
    decimal_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Unicode),
    Column("category", Unicode),
    Column("manufacturer", Unicode),
    Column("price", Numeric(10, 2)),
    Column("stock_quantity", Integer),
)


@pytest.fixture(name="decimal_db_engine")
def decimal_db_engine_fixture():
    db_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    decimal_metadata.create_all(db_engine)
    with db_engine.begin() as connection:
        connection.execute(
            decimal_components_table.insert(),
            [
                {
                    "id": 1,
                    "name": "1k 0603",
                    "category": "resistor",
                    "manufacturer": "Yageo",
                    "price": Decimal("0.10"),
                    "stock_quantity": 10000,
                },
                {
                    "id": 2,
                    "name": "10k 0603",
                    "category": "resistor",
                    "manufacturer": "Yageo",
                    "price": Decimal("1.00"),
                    "stock_quantity": 0,
                },
                {
                    "id": 3,
                    "name": "BC547",
                    "category": "transistor",
                    "manufacturer": "onsemi",
                    "price": Decimal("1.01"),
                    "stock_quantity": 300,
                },
            ],
        )
    yield db_engine
    db_engine.dispose()


def test_range_query_decimal_column_float_bounds(decimal_db_engine):
    query = RangeQuery(
        SA_ENGINE_KEY,
        decimal_components_table,
        {
            PRICE: decimal_components_table.c.price,
            STOCK: decimal_components_table.c.stock_quantity,
        },
    )
    key = PriceRange(0.1, 1.0)
    both = PriceAndStockRange(0.1, 1.0, 0, 10000)
    result = query({SA_ENGINE_KEY: decimal_db_engine}, [key, both])

    assert sorted(ids(result[key])) == [1, 2]
    assert sorted(ids(result[both])) == [1, 2]
    assert sorted(entity["price"] for entity in result[key]) == [
        Decimal("0.10"),
        Decimal("1.00"),
    ]


def test_range_query_inverted_range(db_engine):
    query = RangeQuery(SA_ENGINE_KEY, components_table, range_columns())
    key = PriceRange(5, 1)
    assert query({SA_ENGINE_KEY: db_engine}, [key]) == {}
