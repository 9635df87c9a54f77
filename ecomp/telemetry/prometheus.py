import time
import inspect
from functools import wraps
from typing import Any, Callable, Optional

from prometheus_client import Summary

from ..context import Loaders, pass_context, _do_pass_context


_METRIC = None


def _get_default_metric():
    global _METRIC
    if _METRIC is None:
        _METRIC = Summary(
            "ecomp_fetch_time",
            "Loader fetch function time (seconds)",
            ["loaders", "loader"],
        )
    return _METRIC


class FetchMetrics:
    """Measures time spent in fetch functions of every loader in a
    :py:class:`~ecomp.context.Loaders` registry.

    .. code-block:: python

        loaders = FetchMetrics('inventory').apply(inventory_loaders(...))

    """

    def __init__(self, name: str, *, metric: Optional[Summary] = None) -> None:
        self._name = name
        self._metric = metric or _get_default_metric()

    def get_labels(self, loaders_name: str, loader_name: str) -> list:
        return [loaders_name, loader_name]

    def wrap(self, loader_name: str, func: Callable) -> Callable:
        metric = self._metric.labels(*self.get_labels(self._name, loader_name))

        async def observe_async(start_time: float, result: Any) -> Any:
            try:
                return await result
            finally:
                metric.observe(time.perf_counter() - start_time)

        def wrapper(*args: Any) -> Any:
            start_time = time.perf_counter()
            result = func(*args)
            if inspect.isawaitable(result):
                return observe_async(start_time, result)
            metric.observe(time.perf_counter() - start_time)
            return result

        if inspect.isfunction(func):
            wrapper = wraps(func)(wrapper)
        if _do_pass_context(func):
            wrapper = pass_context(wrapper)
        return wrapper

    def apply(self, loaders: Loaders) -> Loaders:
        instrumented = Loaders()
        for name in loaders:
            loader_def = loaders[name]
            instrumented.define(
                name,
                self.wrap(name, loader_def.fetch),
                cardinality=loader_def.cardinality,
                key_type=loader_def.key_type,
            )
        return instrumented
