import asyncio
from typing import Awaitable, Callable, Dict, Optional

from starlette.requests import Request

from .results import FetchResult, error_messages


class LoadCancelled(Exception):
    pass


class LoadScope:
    """Runs a page's reads together and publishes them only while the page is still wanted.

    ``is_alive`` is consulted after the join; a dead scope raises
    ``LoadCancelled`` so nothing computed from abandoned reads gets used.
    """

    def __init__(self, is_alive: Optional[Callable[[], Awaitable[bool]]] = None):
        self._is_alive = is_alive
        self.cancelled = False

    @classmethod
    def for_request(cls, request: Request) -> "LoadScope":
        async def is_alive() -> bool:
            return not await request.is_disconnected()

        return cls(is_alive)

    def cancel(self) -> None:
        self.cancelled = True

    async def alive(self) -> bool:
        if self.cancelled:
            return False
        if self._is_alive is None:
            return True
        return await self._is_alive()

    async def gather(self, **loads: Awaitable[FetchResult]) -> Dict[str, FetchResult]:
        names = list(loads)
        results = await asyncio.gather(*loads.values())
        if not await self.alive():
            raise LoadCancelled()
        return dict(zip(names, results))


def load_errors(results: Dict[str, FetchResult]):
    return error_messages(results.values())
