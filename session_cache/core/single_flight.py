import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Per-key call coalescing, based on Go's singleflight.Group.

    At most one call per key runs at a time. Callers arriving while a call
    for the same key is in progress wait for its outcome instead of starting
    their own. Calls for different keys run independently.

    Example:
        ```python
        group = SingleFlight[dict]()

        # Both callers share a single login
        a, b = await asyncio.gather(
            group.do("user-1a2b3c4d", login),
            group.do("user-1a2b3c4d", login),
        )
        assert a is b
        ```
    """

    def __init__(self) -> None:
        self._flights: dict[str, asyncio.Future[T]] = {}
        self._lock = asyncio.Lock()  # Protects _flights registration

    def in_flight(self, key: str) -> bool:
        """Check whether a call for ``key`` is in progress."""
        return key in self._flights

    async def join(self, key: str) -> tuple[bool, T | None]:
        """
        Wait for the in-progress call for ``key``, if any.

        Returns:
            ``(True, result)`` if a call was joined, ``(False, None)`` otherwise.

        Raises:
            Exception: Whatever the joined call raised.
        """
        future = self._flights.get(key)
        if future is None:
            return False, None
        return True, await asyncio.shield(future)

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` for ``key`` unless a call is already in progress.

        Args:
            key: Coordination key.
            fn: Coroutine factory producing the result.

        Returns:
            Result of the call this caller ran or joined.

        Raises:
            Exception: Whatever ``fn`` raised, delivered to every caller.
        """
        async with self._lock:
            future = self._flights.get(key)
            owner = future is None
            if owner:
                future = asyncio.get_running_loop().create_future()
                self._flights[key] = future

        if not owner:
            logger.debug("Joining in-progress flight", key=key)
            # Shield so a cancelled waiter does not cancel the shared outcome
            return await asyncio.shield(future)

        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except BaseException as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure is not reported as unhandled
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            # Release without awaiting so a cancelled owner never leaves the key held
            if self._flights.get(key) is future:
                del self._flights[key]
