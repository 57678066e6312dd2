"""Boundary between the engine and whoever holds route privileges.

Batches go to the privileged helper when it answers, otherwise to the
direct sudo path. Executor failures are logged and counted here; they
never propagate as exceptions.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, Optional

from ..exceptions import ExecutorError, HelperRejectedError
from ..models.routes import ActiveRoute, BatchResult, HostsEntry
from ..utils.logging import get_logger
from .executor import RouteExecutor

logger = get_logger("routing.application")


class RouteApplicationGateway:
    """Submits route batches and hosts-file updates."""

    def __init__(
        self,
        helper: Optional[RouteExecutor],
        direct: RouteExecutor,
        probe_timeout: float = 5.0,
        on_helper_unavailable: Optional[Callable[[str], None]] = None,
    ):
        self._helper = helper
        self._direct = direct
        self._probe_timeout = probe_timeout
        self._on_helper_unavailable = on_helper_unavailable
        self._helper_available = False
        self._helper_version: Optional[str] = None
        self._unavailable_reported = False

    @property
    def helper_available(self) -> bool:
        return self._helper_available

    @property
    def helper_version(self) -> Optional[str]:
        return self._helper_version

    async def check_helper(self) -> bool:
        """Ask the helper for its version; a silent helper selects the direct path."""
        if self._helper is None:
            self._mark_unavailable("no helper configured")
            return False
        try:
            version = await asyncio.wait_for(self._helper.get_version(), timeout=self._probe_timeout)
        except (ExecutorError, asyncio.TimeoutError) as e:
            self._mark_unavailable(str(e) or type(e).__name__)
            return False
        if not version:
            self._mark_unavailable("helper returned no version")
            return False

        if not self._helper_available:
            logger.info("privileged_helper_connected", version=version)
        self._helper_available = True
        self._helper_version = version
        self._unavailable_reported = False
        return True

    def _mark_unavailable(self, reason: str) -> None:
        self._helper_available = False
        self._helper_version = None
        if self._unavailable_reported:
            return
        self._unavailable_reported = True
        logger.warning("privileged_helper_unavailable", reason=reason, fallback="direct")
        if self._on_helper_unavailable is not None:
            self._on_helper_unavailable(reason)

    @property
    def _executor(self) -> RouteExecutor:
        return self._helper if self._helper_available and self._helper is not None else self._direct

    async def _run(self, operation: str, call: Callable[[RouteExecutor], Awaitable]):
        """Run `call` on the active executor, degrading to direct on transport failure.

        A refusal from a reachable helper propagates unchanged; the helper
        stays selected.
        """
        executor = self._executor
        try:
            return await call(executor)
        except HelperRejectedError as e:
            logger.warning("helper_rejected_request", operation=operation, error=str(e))
            raise
        except ExecutorError as e:
            if executor is self._direct:
                raise
            logger.warning("helper_call_failed", operation=operation, error=str(e))
            self._mark_unavailable(str(e))
            return await call(self._direct)

    async def apply(self, routes: Iterable[ActiveRoute]) -> BatchResult:
        routes = list(routes)
        if not routes:
            return BatchResult()
        try:
            result = await self._run("add_routes", lambda ex: ex.add_routes_batch(routes))
        except ExecutorError as e:
            logger.error("routes_apply_failed", count=len(routes), error=str(e))
            return BatchResult(failure_count=len(routes), error=str(e))
        if result.failure_count:
            logger.warning(
                "routes_partially_applied",
                succeeded=result.success_count,
                failed=result.failure_count,
                error=result.error,
            )
        else:
            logger.info("routes_applied", count=result.success_count)
        return result

    async def withdraw(self, routes: Iterable[ActiveRoute]) -> BatchResult:
        destinations = list(dict.fromkeys(r.destination for r in routes))
        if not destinations:
            return BatchResult()
        try:
            result = await self._run("remove_routes", lambda ex: ex.remove_routes_batch(destinations))
        except ExecutorError as e:
            logger.error("routes_remove_failed", count=len(destinations), error=str(e))
            return BatchResult(failure_count=len(destinations), error=str(e))
        if result.failure_count:
            logger.warning(
                "routes_partially_removed",
                succeeded=result.success_count,
                failed=result.failure_count,
                error=result.error,
            )
        else:
            logger.info("routes_removed", count=result.success_count)
        return result

    async def sync_hosts(self, entries: Iterable[HostsEntry]) -> bool:
        """Rewrite the managed hosts block and flush the resolver cache."""
        entries = list(entries)
        try:
            ok, error = await self._run("update_hosts", lambda ex: ex.update_hosts_file(entries))
            if not ok:
                logger.error("hosts_update_failed", entries=len(entries), error=error)
                return False
            await self._run("flush_dns", lambda ex: ex.flush_dns_cache())
        except ExecutorError as e:
            logger.error("hosts_update_failed", entries=len(entries), error=str(e))
            return False
        logger.info("hosts_updated", entries=len(entries))
        return True

    async def clear_hosts(self) -> bool:
        return await self.sync_hosts([])
