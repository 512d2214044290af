from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from arca_vault.core.errors import VaultEngineError

# Raised by web3 for reverts and undecodable results
_DETERMINISTIC_WEB3_ERRORS = frozenset(
    {"ContractLogicError", "BadFunctionCallOutput", "Web3ValueError"}
)


def exponential_backoff_s(
    attempt: int, *, base_delay_s: float = 0.25, max_delay_s: float | None = None
) -> float:
    """Delay before retry number ``attempt + 1``."""
    delay_s = base_delay_s * 2**attempt
    return delay_s if max_delay_s is None else min(delay_s, max_delay_s)


def is_transient_read_error(exc: Exception) -> bool:
    """Reverts and engine validation failures are deterministic; retrying won't help."""
    if isinstance(exc, VaultEngineError):
        return False
    return type(exc).__name__ not in _DETERMINISTIC_WEB3_ERRORS


async def retry_async[T](
    read: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay_s: float = 0.25,
    max_delay_s: float | None = 4.0,
    should_retry: Callable[[Exception], bool] = is_transient_read_error,
    label: str = "rpc read",
) -> T:
    """Await ``read()`` up to ``max_retries`` times, backing off between tries."""
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    attempt = 0
    while True:
        try:
            return await read()
        except Exception as exc:  # noqa: BLE001
            if attempt + 1 >= max_retries or not should_retry(exc):
                raise
            delay_s = exponential_backoff_s(
                attempt, base_delay_s=base_delay_s, max_delay_s=max_delay_s
            )
            attempt += 1
            logger.warning(
                f"{label} failed (attempt {attempt}/{max_retries}), "
                f"retrying in {delay_s:.2f}s: {exc}"
            )
            await asyncio.sleep(delay_s)
