from dataclasses import dataclass
from functools import partial
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    Mapping,
    Optional,
    TypeVar,
    cast,
)

from .error import MisuseError
from .loader import BatchLoader, KeyType, One

T = TypeVar("T")


def pass_context(func: T) -> T:
    """Decorator to pass context to a fetch function as a first argument.

    Can be used on functions and on classes whose instances are callable.
    """
    func.__pass_context__ = True  # type: ignore[attr-defined]
    return cast(T, func)


def _do_pass_context(func: Any) -> bool:
    return getattr(func, "__pass_context__", False)


class Context(Mapping):
    def __init__(self, mapping: Mapping) -> None:
        self.__mapping = mapping

    def __len__(self) -> int:
        return len(self.__mapping)

    def __iter__(self) -> Iterator:
        return iter(self.__mapping)

    def __getitem__(self, item: Any) -> Any:
        try:
            return self.__mapping[item]
        except KeyError:
            raise KeyError(
                "Key {!r} is not specified in the unit of work "
                "context".format(item)
            )


@dataclass(frozen=True)
class LoaderDef:
    name: str
    fetch: Callable
    cardinality: Any = One
    key_type: Optional[KeyType] = None


class Loaders:
    """Application-wide set of loader definitions. Loader instances are
    created from them by every :py:class:`UnitOfWork` separately.
    """

    def __init__(self) -> None:
        self._defs: Dict[str, LoaderDef] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._defs

    def __iter__(self) -> Iterator[str]:
        return iter(self._defs)

    def __getitem__(self, name: str) -> LoaderDef:
        try:
            return self._defs[name]
        except KeyError:
            raise KeyError("Loader {!r} is not defined".format(name))

    def define(
        self,
        name: str,
        fetch: Callable,
        *,
        cardinality: Any = One,
        key_type: Optional[KeyType] = None,
    ) -> LoaderDef:
        if name in self._defs:
            raise ValueError("Loader {!r} is already defined".format(name))
        loader_def = LoaderDef(name, fetch, cardinality, key_type)
        self._defs[name] = loader_def
        return loader_def


class UnitOfWork:
    """Scope of a single request. Owns loader instances and their caches,
    which are dropped when the unit of work is complete.

    .. code-block:: python

        async with UnitOfWork(loaders, {SA_ENGINE_KEY: engine}) as uow:
            component = await uow.loader('component_by_id').load(42)

    """

    def __init__(
        self,
        loaders: Loaders,
        context: Optional[Mapping] = None,
    ) -> None:
        self.context = Context(context or {})
        self._defs = loaders
        self._loaders: Dict[str, BatchLoader] = {}
        self._entered = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def loader(self, name: str) -> BatchLoader:
        if self._closed:
            raise MisuseError(
                "Unit of work is already complete, loader {!r} "
                "is not available".format(name)
            )
        loader = self._loaders.get(name)
        if loader is None:
            loader_def = self._defs[name]
            fetch = loader_def.fetch
            if _do_pass_context(fetch):
                fetch = partial(fetch, self.context)
            loader = BatchLoader(
                fetch,
                cardinality=loader_def.cardinality,
                key_type=loader_def.key_type,
                name=name,
            )
            self._loaders[name] = loader
        return loader

    def close(self) -> None:
        self._closed = True
        for loader in self._loaders.values():
            loader.close()

    async def __aenter__(self) -> "UnitOfWork":
        if self._entered or self._closed:
            raise MisuseError("Unit of work can not be reused")
        self._entered = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
        for loader in self._loaders.values():
            await loader.wait_closed()
