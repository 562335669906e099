"""
Per-stage timeouts for pipeline I/O.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from saju_rag.errors import StageTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], seconds: Optional[float], stage: str) -> T:
    """
    Await ``awaitable`` within ``seconds``.

    A falsy ``seconds`` disables the bound. Expiry is reported as
    StageTimeoutError naming the stage.
    """
    if not seconds:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except StageTimeoutError:
        raise
    except asyncio.TimeoutError as e:
        raise StageTimeoutError(stage, seconds) from e
