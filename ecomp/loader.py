"""
    ecomp.loader
    ~~~~~~~~~~~~

    Batch loader coalesces lookups made during one event loop turn into a
    single call of the fetch function and caches the outcomes for the
    lifetime of a unit of work.

    Fetch function receives a list of distinct keys and returns a mapping
    from key to value. Keys missing from the mapping resolve to
    :py:data:`Nothing` for :py:data:`One` loaders and to an empty list for
    :py:data:`Many` loaders.

"""

import logging

from asyncio import (
    AbstractEventLoop,
    CancelledError,
    Future,
    Handle,
    Task,
    gather,
    get_running_loop,
    shield,
)
from collections.abc import Mapping
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from prometheus_client import Counter

from .error import MisuseError
from .utils import const, maybe_await

log = logging.getLogger(__name__)

#: Each key resolves to a single value
One = const("One")

#: Each key resolves to a list of values
Many = const("Many")

#: Special constant that is used by :py:data:`One` loaders in order to
#: indicate that there is nothing found for a key
Nothing = const("Nothing")

LOADER_CACHE_HITS = Counter(
    name="ecomp_loader_cache_hits",
    documentation="Loader requests served from the unit of work cache",
    labelnames=["loader"],
)
LOADER_CACHE_MISSES = Counter(
    name="ecomp_loader_cache_misses",
    documentation="Loader requests enqueued for fetching",
    labelnames=["loader"],
)
LOADER_BATCHES = Counter(
    name="ecomp_loader_batches",
    documentation="Batched fetch calls",
    labelnames=["loader"],
)
LOADER_BATCH_ERRORS = Counter(
    name="ecomp_loader_batch_errors",
    documentation="Batched fetch calls which failed",
    labelnames=["loader"],
)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

KeyType = Union[Type, Tuple[Type, ...]]


def _accepts(key_type: KeyType, key: Any) -> bool:
    if not isinstance(key, key_type):
        return False
    # True == 1, bool keys need bool listed in key_type
    if isinstance(key, bool):
        types = key_type if isinstance(key_type, tuple) else (key_type,)
        return any(issubclass(t, bool) for t in types)
    return True


class BatchLoader(Generic[K, V]):
    """Coalesces lookups by key into batched calls of the ``fetch``
    function.

    :param fetch: function which takes a list of distinct keys and returns
                  a mapping (or an awaitable of a mapping) from key to value
    :param cardinality: :py:data:`One` or :py:data:`Many`
    :param key_type: if specified, every key must be an instance of it
    :param name: name used in logs and metrics
    """

    def __init__(
        self,
        fetch: Callable[[List[K]], Any],
        *,
        cardinality: Any = One,
        key_type: Optional[KeyType] = None,
        name: Optional[str] = None,
    ) -> None:
        if cardinality is not One and cardinality is not Many:
            raise TypeError(
                "Cardinality should be One or Many, {!r} given".format(
                    cardinality
                )
            )
        self.fetch = fetch
        self.cardinality = cardinality
        self.key_type = key_type
        if name is None:
            name = getattr(fetch, "__name__", None) or type(fetch).__name__
        self.name = name

        self._loop: Optional[AbstractEventLoop] = None
        self._closed = False
        self._cache: Dict[K, Future] = {}
        self._queue: Dict[K, Future] = {}
        self._dispatch_handle: Optional[Handle] = None
        self._tasks: Set[Task] = set()

    def __repr__(self) -> str:
        return "<{}: name={!r}, cardinality={}>".format(
            self.__class__.__name__,
            self.name,
            self.cardinality.__name__,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_key(self, key: Any) -> None:
        if self.key_type is not None and not _accepts(self.key_type, key):
            raise MisuseError(
                "Loader {!r} accepts keys of type {!r}, got {!r}".format(
                    self.name, self.key_type, key
                )
            )
        try:
            hash(key)
        except TypeError:
            raise MisuseError(
                "Loader {!r} got unhashable key {!r}".format(self.name, key)
            )

    def _get_loop(self) -> AbstractEventLoop:
        if self._closed:
            raise MisuseError(
                "Loader {!r} is closed, its unit of work is already "
                "complete".format(self.name)
            )
        loop = get_running_loop()
        if self._loop is None:
            self._loop = loop
        elif self._loop is not loop:
            raise MisuseError(
                "Loader {!r} is bound to another event loop".format(self.name)
            )
        return loop

    def _future(self, key: K) -> Future:
        loop = self._get_loop()
        self._check_key(key)

        fut = self._cache.get(key)
        if fut is not None:
            LOADER_CACHE_HITS.labels(self.name).inc()
            return fut

        LOADER_CACHE_MISSES.labels(self.name).inc()
        fut = loop.create_future()
        self._cache[key] = fut
        self._queue[key] = fut
        if self._dispatch_handle is None:
            self._dispatch_handle = loop.call_soon(self._dispatch)
        return fut

    async def load(self, key: K) -> V:
        """Returns value for the ``key``, fetching it along with all other
        keys requested during the current event loop turn.
        """
        # shield keeps shared outcome alive when one of the waiters is
        # cancelled
        return await shield(self._future(key))

    async def load_many(self, keys: Iterable[K]) -> List[V]:
        futures = [self._future(key) for key in keys]
        return list(await gather(*[shield(fut) for fut in futures]))

    def prime(self, key: K, value: V) -> bool:
        """Stores ``value`` for the ``key`` unless the key was already
        requested. Returns True if value was stored.
        """
        loop = self._get_loop()
        self._check_key(key)
        if key in self._cache:
            return False
        fut = loop.create_future()
        fut.set_result(value)
        self._cache[key] = fut
        return True

    def _dispatch(self) -> None:
        self._dispatch_handle = None
        batch, self._queue = self._queue, {}
        if not batch:
            return
        assert self._loop is not None
        task = self._loop.create_task(self._run(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _missing(self) -> Any:
        if self.cardinality is Many:
            return []
        return Nothing

    async def _run(self, batch: Dict[K, Future]) -> None:
        keys = list(batch)
        log.debug("Loader %r dispatches %d key(s)", self.name, len(keys))
        LOADER_BATCHES.labels(self.name).inc()
        try:
            result = await maybe_await(self.fetch(keys))
            if not isinstance(result, Mapping):
                raise TypeError(
                    "Loader {!r} fetch function returned {!r}, "
                    "mapping expected".format(self.name, type(result))
                )
        except CancelledError:
            for fut in batch.values():
                fut.cancel()
            raise
        except Exception as exc:
            log.debug(
                "Loader %r batch of %d key(s) failed: %s",
                self.name,
                len(keys),
                type(exc).__name__,
            )
            LOADER_BATCH_ERRORS.labels(self.name).inc()
            for fut in batch.values():
                if not fut.done():
                    fut.set_exception(exc)
            return

        for key, fut in batch.items():
            if fut.done():
                continue
            if key in result:
                fut.set_result(result[key])
            else:
                fut.set_result(self._missing())

    def close(self) -> None:
        """Completes loader's unit of work: cancels pending requests and
        in-flight fetches and drops cached outcomes.
        """
        if self._closed:
            return
        self._closed = True
        if self._dispatch_handle is not None:
            self._dispatch_handle.cancel()
            self._dispatch_handle = None
        for task in self._tasks:
            task.cancel()
        for fut in self._cache.values():
            if not fut.done():
                fut.cancel()
        self._queue.clear()
        self._cache.clear()

    async def wait_closed(self) -> None:
        if self._tasks:
            await gather(*self._tasks, return_exceptions=True)
