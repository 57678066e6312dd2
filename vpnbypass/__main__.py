"""Command-line entry point.

Usage:
    python -m vpnbypass status
    python -m vpnbypass apply
    python -m vpnbypass run
    python -m vpnbypass add-domain example.com
    python -m vpnbypass toggle-service youtube
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Optional

from .config import get_settings
from .engine import BypassEngine
from .exceptions import BypassError
from .scheduler import RefreshScheduler, StatusMonitor
from .utils.logging import get_logger, setup_logging

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vpnbypass", description="Route selected domains around an active VPN")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show VPN state, gateway and helper availability")
    sub.add_parser("apply", help="Resolve all enabled entries and install bypass routes")
    sub.add_parser("refresh", help="Re-resolve enabled domains and install changed routes")
    sub.add_parser("clear", help="Withdraw bypass routes for the current configuration")
    sub.add_parser("run", help="Monitor the VPN and refresh routes until interrupted")

    add = sub.add_parser("add-domain", help="Add a custom bypass domain")
    add.add_argument("domain")
    remove = sub.add_parser("remove-domain", help="Remove a custom bypass domain")
    remove.add_argument("domain", help="Domain name or entry id")
    toggle = sub.add_parser("toggle-service", help="Enable or disable a built-in service")
    toggle.add_argument("service_id")
    return parser


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _one_shot(engine: BypassEngine, command: str, args: argparse.Namespace) -> int:
    if command == "add-domain":
        entry = await engine.add_domain(args.domain)
        _print(entry.model_dump(mode="json"))
        return 0
    if command == "remove-domain":
        entry = await engine.remove_domain(args.domain)
        _print(entry.model_dump(mode="json"))
        return 0
    if command == "toggle-service":
        service = await engine.toggle_service(args.service_id)
        _print({"id": service.id, "name": service.name, "enabled": service.enabled})
        return 0

    await engine.prepare()
    snapshot = await engine.check_status(apply_on_connect=False)

    if command == "status":
        _print(snapshot.to_dict())
        return 0

    if not snapshot.vpn.connected and command != "clear":
        logger.warning("vpn_not_connected", command=command)
    if command == "apply":
        report = await engine.apply_all_routes()
        _print(report.to_dict() if report else {"skipped": True})
        return 0 if report and report.failed == 0 else 1
    if command == "refresh":
        report = await engine.refresh_routes()
        _print(report.to_dict() if report else {"skipped": True})
        return 0 if report else 1
    if command == "clear":
        ok = await engine.remove_all_routes(include_configured=True)
        _print({"removed": ok})
        return 0 if ok else 1
    return 2


async def _run_daemon(engine: BypassEngine) -> int:
    await engine.start()
    monitor = StatusMonitor(
        engine,
        interval=engine.settings.status_check_interval,
        watchdog_interval=engine.settings.watchdog_interval,
    )
    scheduler = RefreshScheduler(engine)
    tasks = [asyncio.create_task(monitor.run()), asyncio.create_task(scheduler.run())]

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
    finally:
        monitor.stop()
        scheduler.stop()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await engine.cleanup_on_quit()
    return 0


async def _main(args: argparse.Namespace) -> int:
    engine = BypassEngine(get_settings())
    if args.command == "run":
        return await _run_daemon(engine)
    try:
        return await _one_shot(engine, args.command, args)
    except BypassError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(
        debug=args.debug or settings.debug,
        log_dir=str(settings.app_dir / settings.log_dir),
        log_max_bytes=settings.log_max_bytes,
        log_backup_count=settings.log_backup_count,
        stream=sys.stderr,
    )
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
