__all__ = ["LoaderError", "MisuseError"]


class LoaderError(Exception):
    pass


class MisuseError(LoaderError):
    """Raised when a loader or a unit of work is used in a way that could
    corrupt cached results: wrong key shape, use after close or sharing
    between event loops.
    """
