import sys
import inspect
from typing import Any, NewType, cast

Const = NewType("Const", object)


def const(name: str) -> Const:
    t = type(name, (object,), {})
    t.__module__ = sys._getframe(1).f_globals.get("__name__", "__main__")
    return cast(Const, t)


async def maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    else:
        return result
