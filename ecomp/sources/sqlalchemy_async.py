from typing import Dict, List, Sequence

from sqlalchemy.engine import Row
from sqlalchemy.sql import Select

from . import sqlalchemy as _sa
from ..context import Context

# We are limiting fetch size to reduce CPU usage and avoid event-loop blocking
FETCH_SIZE = 100


async def _fetch_rows(ctx: Context, engine_key: str, expr: Select) -> List[Row]:
    sa_engine = ctx[engine_key]
    async with sa_engine.connect() as connection:
        stream = await connection.stream(expr)
        rows: List[Row] = []
        while True:
            bucket = await stream.fetchmany(FETCH_SIZE)
            if bucket:
                rows.extend(bucket)
            else:
                break
    return rows


class EntityQuery(_sa.EntityQuery):
    async def __call__(self, ctx: Context, keys: Sequence) -> Dict:
        if not keys:
            return {}

        rows = await _fetch_rows(ctx, self.engine_key, self.select_expr(keys))
        return self.result_proc(rows, keys)


class GroupQuery(_sa.GroupQuery):
    async def __call__(self, ctx: Context, keys: Sequence) -> Dict:
        if not keys:
            return {}

        rows = await _fetch_rows(ctx, self.engine_key, self.select_expr(keys))
        return self.result_proc(rows, keys)


class RangeQuery(_sa.RangeQuery):
    async def __call__(self, ctx: Context, keys: Sequence) -> Dict:
        if not keys:
            return {}

        rows = await _fetch_rows(ctx, self.engine_key, self.select_expr(keys))
        return self.result_proc(rows, keys)
