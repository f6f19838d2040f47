"""
Health probes.

- /health/live answers as long as the event loop does
- /health/ready (and /health) runs every registered component check and
  answers 503 when any of them reports unhealthy
"""

import inspect
import logging
from typing import Any, Callable, Dict

from aiohttp import web

logger = logging.getLogger("vericall.health")


class HealthChecker:
    """Named component checks, served as aiohttp probe routes."""

    def __init__(self):
        self._checks: Dict[str, Callable[[], Any]] = {}

    def register_check(self, name: str, check_fn: Callable[[], bool]) -> None:
        """Add a plain check; ``check_fn()`` is truthy when the component is usable."""
        self._checks[name] = check_fn

    def register_async_check(self, name: str, check_fn: Callable[[], Any]) -> None:
        """Add a coroutine check, awaited on every readiness probe."""
        self._checks[name] = check_fn

    async def _run(self, name: str, check_fn: Callable[[], Any]) -> bool:
        try:
            outcome = check_fn()
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return bool(outcome)
        except Exception as e:
            logger.warning(f"Health check '{name}' raised: {e}")
            return False

    async def check_all(self) -> Dict[str, bool]:
        return {name: await self._run(name, fn) for name, fn in list(self._checks.items())}

    async def _live(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def _ready(self, request: web.Request) -> web.Response:
        components = await self.check_all()
        healthy = all(components.values())
        body = {"status": "healthy" if healthy else "unhealthy", "components": components}
        return web.json_response(body, status=200 if healthy else 503)

    def add_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._ready)
        app.router.add_get("/health/live", self._live)
        app.router.add_get("/health/ready", self._ready)
