"""
Running synchronous store calls from async code.

The Supabase repositories are synchronous (each call is an HTTP round-trip).
Async services hand them to the loop's default executor so that callbacks,
poll tasks and purchases keep making progress while one of them waits on the
store.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_blocking(fn: Callable[..., T], *args: Any) -> T:
    return await asyncio.get_running_loop().run_in_executor(None, fn, *args)


__all__ = ["run_blocking"]
