from __future__ import annotations

from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any


def require_user(fn: Callable) -> Callable:
    """Return ``(False, ...)`` early if ``self.user_address`` is not set."""

    @wraps(fn)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        if not getattr(self, "user_address", None):
            return False, "user address not configured"
        return await fn(self, *args, **kwargs)

    return wrapper


def status_tuple[T](
    fn: Callable[..., Coroutine[Any, Any, T]],
) -> Callable[..., Coroutine[Any, Any, tuple[bool, T | str]]]:
    """Turn an async read into ``(True, result)`` / ``(False, message)``.

    RPC failures and inconsistent on-chain values both end up as the message;
    they are logged on ``self.logger`` with the method name.
    """

    @wraps(fn)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> tuple[bool, T | str]:
        try:
            return True, await fn(self, *args, **kwargs)
        except Exception as exc:
            self.logger.error(f"{fn.__name__} failed for {self.name}: {exc}")
            return False, str(exc)

    return wrapper  # type: ignore[return-value]
