from collections import defaultdict
from decimal import Decimal
from typing import (
    Any,
    Dict,
    Hashable,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
)

import sqlalchemy
from sqlalchemy.engine import Row
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import BinaryExpression, ColumnElement

from ..context import pass_context, Context
from ..keys import RangeKey


def _table_repr(table: sqlalchemy.Table) -> str:
    return "Table({})".format(
        ", ".join(
            [
                repr(table.name),
                repr(table.metadata),
                "...",
                "schema={!r}".format(table.schema),
            ]
        )
    )


def _from_clause_repr(from_clause: Any) -> str:
    if isinstance(from_clause, sqlalchemy.Table):
        return _table_repr(from_clause)
    return repr(from_clause)


def _row_dict(row: Row) -> Dict:
    return dict(row._mapping)


class _Query:
    def __init__(self, engine_key: str, from_clause: Any) -> None:
        self.engine_key = engine_key
        self.from_clause = from_clause

    def __repr__(self) -> str:
        return "<{}.{}: engine_key={!r}, from_clause={}>".format(
            self.__class__.__module__,
            self.__class__.__name__,
            self.engine_key,
            _from_clause_repr(self.from_clause),
        )

    def select_expr(self, keys: Sequence) -> Select:
        raise NotImplementedError(type(self))

    def result_proc(self, rows: List[Row], keys: Sequence) -> Dict:
        raise NotImplementedError(type(self))

    def __call__(self, ctx: Context, keys: Sequence) -> Dict:
        if not keys:
            return {}

        expr = self.select_expr(keys)
        with ctx[self.engine_key].connect() as connection:
            rows = connection.execute(expr).fetchall()
        return self.result_proc(rows, keys)


@pass_context
class EntityQuery(_Query):
    """Fetches one row per primary key value. Suitable for
    :py:data:`~ecomp.loader.One` loaders.
    """

    def __init__(
        self,
        engine_key: str,
        from_clause: Any,
        *,
        primary_key: Optional[sqlalchemy.Column] = None,
    ) -> None:
        super().__init__(engine_key, from_clause)
        if primary_key is not None:
            self.primary_key = primary_key
        else:
            # currently only one column supported
            (self.primary_key,) = from_clause.primary_key

    def in_impl(
        self, column: sqlalchemy.Column, values: Iterable
    ) -> BinaryExpression:
        return column.in_(values)

    def select_expr(self, keys: Sequence) -> Select:
        return (
            sqlalchemy.select(self.from_clause)
            .where(self.in_impl(self.primary_key, keys))
        )

    def result_proc(self, rows: List[Row], keys: Sequence) -> Dict:
        return {
            entity[self.primary_key.name]: entity
            for entity in map(_row_dict, rows)
        }


@pass_context
class GroupQuery(_Query):
    """Fetches all rows having ``column`` equal to any of the keys and groups
    them by that value. Suitable for :py:data:`~ecomp.loader.Many` loaders.
    """

    def __init__(
        self,
        engine_key: str,
        from_clause: Any,
        column: sqlalchemy.Column,
    ) -> None:
        super().__init__(engine_key, from_clause)
        self.column = column

    def select_expr(self, keys: Sequence) -> Select:
        return (
            sqlalchemy.select(self.from_clause)
            .where(self.column.in_(keys))
        )

    def result_proc(self, rows: List[Row], keys: Sequence) -> Dict:
        groups: Dict[Hashable, List[Dict]] = defaultdict(list)
        for entity in map(_row_dict, rows):
            groups[entity[self.column.name]].append(entity)
        return dict(groups)


@pass_context
class RangeQuery(_Query):
    """Fetches rows matching any of the range keys in a single query and
    assigns every row to each key whose ranges contain it.

    :param columns: mapping of range dimension name (see
                    :py:mod:`ecomp.keys`) to a column
    """

    def __init__(
        self,
        engine_key: str,
        from_clause: Any,
        columns: Mapping[str, sqlalchemy.Column],
    ) -> None:
        super().__init__(engine_key, from_clause)
        self.columns = dict(columns)

    def coerce(self, dimension: str, value: Any) -> Any:
        # Decimal columns are compared with Decimal bounds
        column_type = self.columns[dimension].type
        if (
            isinstance(column_type, sqlalchemy.Numeric)
            and column_type.asdecimal
            and not isinstance(value, Decimal)
        ):
            return Decimal(str(value))
        return value

    def key_expr(self, key: RangeKey) -> ColumnElement:
        return sqlalchemy.and_(
            *[
                self.columns[dimension].between(
                    self.coerce(dimension, low),
                    self.coerce(dimension, high),
                )
                for dimension, low, high in key.bounds()
            ]
        )

    def select_expr(self, keys: Sequence[RangeKey]) -> Select:
        return (
            sqlalchemy.select(self.from_clause)
            .where(sqlalchemy.or_(*[self.key_expr(key) for key in keys]))
        )

    def result_proc(
        self, rows: List[Row], keys: Sequence[RangeKey]
    ) -> Dict:
        entities = [_row_dict(row) for row in rows]
        result = {}
        for key in keys:
            matched = []
            for entity in entities:
                values = {
                    dimension: entity[column.name]
                    for dimension, column in self.columns.items()
                }
                if key.contains(values, coerce=self.coerce):
                    matched.append(entity)
            if matched:
                result[key] = matched
        return result
