"""Privileged route executors.

`HelperExecutor` talks to the privileged helper daemon: one JSON request
per line over a Unix socket, one JSON response per line back. The helper
owns the root privilege; this process never does.

`DirectExecutor` is the degraded path used when the helper is missing. It
runs `route` through non-interactive sudo one destination at a time,
which is slower and may require a sudoers rule.
"""

import asyncio
import itertools
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..config import BypassSettings
from ..exceptions import ExecutorError, HelperRejectedError
from ..models.routes import ActiveRoute, BatchResult, HostsEntry
from ..utils.commands import run_command
from ..utils.logging import get_logger
from ..utils.validators import is_valid_destination, is_valid_ipv4
from .hosts import render_hosts

logger = get_logger("routing.executor")


class RouteExecutor(ABC):
    """Operations the engine needs from whoever holds route privileges."""

    @abstractmethod
    async def add_route(self, destination: str, gateway: str, is_network: bool = False) -> tuple[bool, Optional[str]]:
        ...

    @abstractmethod
    async def remove_route(self, destination: str) -> tuple[bool, Optional[str]]:
        ...

    @abstractmethod
    async def add_routes_batch(self, routes: list[ActiveRoute]) -> BatchResult:
        ...

    @abstractmethod
    async def remove_routes_batch(self, destinations: list[str]) -> BatchResult:
        ...

    @abstractmethod
    async def update_hosts_file(self, entries: list[HostsEntry]) -> tuple[bool, Optional[str]]:
        ...

    @abstractmethod
    async def flush_dns_cache(self) -> bool:
        ...

    @abstractmethod
    async def get_version(self) -> Optional[str]:
        ...


class HelperExecutor(RouteExecutor):
    """Client for the privileged helper's line-delimited JSON protocol.

    Transport problems raise ExecutorError. A request the helper refuses
    outright raises HelperRejectedError; per-item verdicts (route rejected,
    hosts write failed) come back as results.
    """

    def __init__(self, socket_path: Path, timeout: float = 30.0):
        self._socket_path = Path(socket_path)
        self._timeout = timeout
        self._ids = itertools.count(1)

    async def _call(self, method: str, **params) -> dict:
        request_id = next(self._ids)
        payload = json.dumps({"id": request_id, "method": method, "params": params}) + "\n"
        writer = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self._socket_path)), timeout=self._timeout
            )
            writer.write(payload.encode())
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), timeout=self._timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise ExecutorError(f"helper unreachable: {e or type(e).__name__}") from e
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

        if not line:
            raise ExecutorError("helper closed the connection")
        try:
            response = json.loads(line)
        except json.JSONDecodeError as e:
            raise ExecutorError(f"helper sent invalid JSON: {e}") from e
        if not isinstance(response, dict) or response.get("id") != request_id:
            raise ExecutorError("helper response does not match request")
        if response.get("error"):
            raise HelperRejectedError(str(response["error"]))
        result = response.get("result")
        return result if isinstance(result, dict) else {}

    async def add_route(self, destination: str, gateway: str, is_network: bool = False) -> tuple[bool, Optional[str]]:
        result = await self._call("addRoute", destination=destination, gateway=gateway, isNetwork=is_network)
        return bool(result.get("ok")), result.get("error")

    async def remove_route(self, destination: str) -> tuple[bool, Optional[str]]:
        result = await self._call("removeRoute", destination=destination)
        return bool(result.get("ok")), result.get("error")

    async def add_routes_batch(self, routes: list[ActiveRoute]) -> BatchResult:
        result = await self._call(
            "addRoutesBatch",
            routes=[
                {"destination": r.destination, "gateway": r.gateway, "isNetwork": r.is_network}
                for r in routes
            ],
        )
        return _batch_from_result(result)

    async def remove_routes_batch(self, destinations: list[str]) -> BatchResult:
        result = await self._call("removeRoutesBatch", destinations=list(destinations))
        return _batch_from_result(result)

    async def update_hosts_file(self, entries: list[HostsEntry]) -> tuple[bool, Optional[str]]:
        result = await self._call(
            "updateHostsFile",
            entries=[{"domain": e.domain, "ip": e.ip} for e in entries],
        )
        return bool(result.get("ok")), result.get("error")

    async def flush_dns_cache(self) -> bool:
        result = await self._call("flushDNSCache")
        return bool(result.get("ok"))

    async def get_version(self) -> Optional[str]:
        result = await self._call("getVersion")
        version = result.get("version")
        return str(version) if version else None


def _batch_from_result(result: dict) -> BatchResult:
    return BatchResult(
        success_count=int(result.get("successCount", 0)),
        failure_count=int(result.get("failureCount", 0)),
        error=result.get("error"),
    )


class DirectExecutor(RouteExecutor):
    """Per-item `sudo -n route ...` invocations and a sudo-tee hosts write."""

    VERSION = "direct"

    def __init__(self, settings: BypassSettings):
        self._settings = settings

    def _sudo(self, *args: str) -> list[str]:
        return [self._settings.sudo_path, "-n", *args]

    async def _route(self, *args: str) -> tuple[bool, Optional[str]]:
        result = await run_command(self._sudo(self._settings.route_path, "-n", *args), timeout=10)
        if not result.ok:
            logger.debug("direct_route_command_failed", args=list(args), error=result.error)
        return result.ok, result.error

    async def add_route(self, destination: str, gateway: str, is_network: bool = False) -> tuple[bool, Optional[str]]:
        if not is_valid_destination(destination) or not is_valid_ipv4(gateway):
            return False, "Invalid destination or gateway format"
        # A stale route for the same destination would make `add` fail
        await self._route("delete", destination)
        kind = "-net" if is_network else "-host"
        return await self._route("add", kind, destination, gateway)

    async def remove_route(self, destination: str) -> tuple[bool, Optional[str]]:
        if not is_valid_destination(destination):
            return False, "Invalid destination format"
        return await self._route("delete", destination)

    async def add_routes_batch(self, routes: list[ActiveRoute]) -> BatchResult:
        success, failure, last_error = 0, 0, None
        for route in routes:
            ok, error = await self.add_route(route.destination, route.gateway, route.is_network)
            if ok:
                success += 1
            else:
                failure += 1
                last_error = error
        return BatchResult(success_count=success, failure_count=failure, error=last_error)

    async def remove_routes_batch(self, destinations: list[str]) -> BatchResult:
        success, failure, last_error = 0, 0, None
        for destination in destinations:
            ok, error = await self.remove_route(destination)
            if ok:
                success += 1
            else:
                failure += 1
                last_error = error
        return BatchResult(success_count=success, failure_count=failure, error=last_error)

    async def update_hosts_file(self, entries: list[HostsEntry]) -> tuple[bool, Optional[str]]:
        hosts_path = self._settings.hosts_file
        try:
            current = hosts_path.read_text(encoding="utf-8")
        except OSError as e:
            return False, f"Could not read {hosts_path}: {e}"

        new_content = render_hosts(current, entries)
        if new_content == current:
            return True, None
        result = await run_command(
            self._sudo("tee", str(hosts_path)),
            timeout=10,
            input_text=new_content,
        )
        return result.ok, result.error

    async def flush_dns_cache(self) -> bool:
        flush = await run_command(self._sudo(self._settings.dscacheutil_path, "-flushcache"), timeout=5)
        await run_command(self._sudo(self._settings.killall_path, "-HUP", "mDNSResponder"), timeout=5)
        return flush.ok

    async def get_version(self) -> Optional[str]:
        return self.VERSION
