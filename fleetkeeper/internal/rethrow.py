"""Translate third-party exceptions at module boundaries."""

from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from loguru import logger

log = logger.bind(component="rethrow")

P = ParamSpec("P")
R = TypeVar("R")
E = TypeVar("E", bound=BaseException)
NewE = TypeVar("NewE", bound=BaseException)


def rethrow(
    catch: type[E] | tuple[type[E], ...],
    into: Callable[[E], NewE],
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Re-raise ``catch`` exceptions as ``into(e)``, chained to the original.

    Exceptions that are not instances of ``catch`` propagate untouched, so
    errors already translated deeper in the call stack keep their type.
    Each translation is logged at debug level with the failing call.

    Example:
        @rethrow(SDKException, lambda e: ActionFailed(str(e)))
        def list_flavors(self): ...
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return fn(*args, **kwargs)
            except catch as e:
                translated = into(e)
                log.debug(
                    "{call} failed with {original}, raising {error}",
                    call=fn.__qualname__,
                    original=type(e).__name__,
                    error=type(translated).__name__,
                )
                raise translated from e

        return wrapper

    return decorator
