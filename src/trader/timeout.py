from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Any, Callable, TypeVar

from src.domain.errors import UpstreamTimeout

T = TypeVar("T")


def call_with_timeout(func: Callable[..., T], timeout_seconds: float, *args: Any, **kwargs: Any) -> T:
    """
    Execute an upstream call with a wall-clock cap. If it takes longer than timeout_seconds, raise UpstreamTimeout.

    Note: this uses a thread pool; the function should be thread-safe.
    The underlying call keeps running in the background if it times out; its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="upstream")
    try:
        future = executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=timeout_seconds)
        except FuturesTimeoutError as exc:
            name = getattr(func, "__name__", repr(func))
            raise UpstreamTimeout(f"{name} timed out after {timeout_seconds}s") from exc
    finally:
        # Do not wait for a hung worker; the caller has already given up on it.
        executor.shutdown(wait=False)
