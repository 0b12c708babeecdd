"""
Command-line interface for the domain monitor.

Commands:
- probe: Run the DNS/HTTP/TLS probe for one domain name
- add / list: Manage the domains in the state file
- refresh: Refresh WHOIS data for every domain
- check-all: Run the health check sweep once
- alerts: Run the expiry alert sweep once
- uptime: Run the up/down checks once and show availability per domain
- cleanup: Prune old health and uptime history
- validate-cron: Validate a cron expression and show its next fire times
- serve: Run the scheduler until interrupted
"""

import argparse
import asyncio
import dataclasses
import json
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .alerts import ExpiryAlertSweep
from .cleanup import HistoryCleanup
from .config import MonitorConfig, load_config
from .dispatcher import NotificationDispatcher, SignalChannel, SlackChannel
from .enums import JobType, LogLevel, WebhookEvent
from .event_logger import EventLogger
from .exceptions import DomainMonitorError
from .health import HealthAggregator
from .live_updates import LiveUpdateHub
from .probes import ProbePipeline
from .refresh import RefreshOrchestrator
from .scheduler import CronParseError, CronParser, Scheduler, SchedulerState
from .state_store import JsonStateStore
from .uptime import UptimeMonitor
from .whois_client import WhoisClient


@dataclass
class MonitorRuntime:
    """All components wired together for one process."""

    config: MonitorConfig
    logger: EventLogger
    store: JsonStateStore
    dispatcher: NotificationDispatcher
    pipeline: ProbePipeline
    health: HealthAggregator
    refresh: RefreshOrchestrator
    alerts: ExpiryAlertSweep
    uptime: UptimeMonitor
    cleanup: HistoryCleanup
    live_updates: LiveUpdateHub


def create_logger(config: MonitorConfig, verbose: bool = False) -> EventLogger:
    level = LogLevel.DEBUG.value if verbose else config.logging.level
    output_format = config.logging.output_format
    if output_format not in ("json", "text", "both"):
        output_format = "text"
    return EventLogger.from_config(level, output_format)


def create_dispatcher(
    config: MonitorConfig,
    store: JsonStateStore,
    logger: Optional[EventLogger] = None,
) -> NotificationDispatcher:
    """Build the dispatcher with every configured alert channel."""
    dispatcher = NotificationDispatcher(
        store=store,
        config=config.notifications.webhooks,
        logger=logger,
    )
    if config.notifications.signal:
        dispatcher.register_channel(
            SignalChannel(config.notifications.signal, simulation_mode=config.simulation_mode)
        )
    if config.notifications.slack:
        dispatcher.register_channel(
            SlackChannel(config.notifications.slack, simulation_mode=config.simulation_mode)
        )
    return dispatcher


def build_runtime(config: MonitorConfig, verbose: bool = False) -> MonitorRuntime:
    logger = create_logger(config, verbose)
    store = JsonStateStore(
        file_path=config.persistence.state_file_path,
        hmac_secret=config.persistence.hmac_secret,
    )
    store.load()

    dispatcher = create_dispatcher(config, store, logger)
    live_updates = LiveUpdateHub(logger=logger)
    pipeline = ProbePipeline(config.probe, logger=logger)

    return MonitorRuntime(
        config=config,
        logger=logger,
        store=store,
        dispatcher=dispatcher,
        pipeline=pipeline,
        health=HealthAggregator(
            registry=store,
            store=store,
            pipeline=pipeline,
            dispatcher=dispatcher,
            live_sink=live_updates,
            config=config.probe,
            logger=logger,
        ),
        refresh=RefreshOrchestrator(
            registry=store,
            whois=WhoisClient(simulation_mode=config.simulation_mode),
            config=config.refresh,
            dispatcher=dispatcher,
            logger=logger,
        ),
        alerts=ExpiryAlertSweep(
            registry=store,
            dispatcher=dispatcher,
            config=config.alerts,
            logger=logger,
        ),
        uptime=UptimeMonitor(
            registry=store,
            store=store,
            dispatcher=dispatcher,
            config=config.uptime,
            logger=logger,
        ),
        cleanup=HistoryCleanup(store, config.retention, logger=logger),
        live_updates=live_updates,
    )


def create_scheduler(runtime: MonitorRuntime, state: Optional[SchedulerState] = None) -> Scheduler:
    """Scheduler with the refresh and alert sweep jobs, plus each enabled optional job, registered."""
    sched_config = runtime.config.scheduler
    scheduler = Scheduler(
        config=sched_config,
        state=state,
        schedule_store=runtime.store,
        logger=runtime.logger,
    )
    scheduler.register_job(
        JobType.REFRESH,
        runtime.refresh.refresh_all,
        ceiling_seconds=sched_config.sweep_ceiling_seconds,
    )
    scheduler.register_job(JobType.ALERT_SWEEP, runtime.alerts.run)
    if sched_config.health_check_enabled:
        scheduler.register_job(
            JobType.HEALTH_CHECK,
            runtime.health.check_all,
            ceiling_seconds=sched_config.sweep_ceiling_seconds,
        )
    if sched_config.uptime_enabled:
        scheduler.register_job(
            JobType.UPTIME,
            runtime.uptime.check_all,
            ceiling_seconds=sched_config.sweep_ceiling_seconds,
        )
    if sched_config.cleanup_enabled:
        scheduler.register_job(JobType.CLEANUP, runtime.cleanup.run)
    return scheduler


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _as_dict(value: Any) -> Any:
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    return value


def _load(args: argparse.Namespace) -> MonitorConfig:
    config = load_config(
        env_file=Path(args.env_file) if args.env_file else None,
        state_file=Path(args.state_file) if args.state_file else None,
    )
    if args.dry_run:
        config = dataclasses.replace(config, simulation_mode=True)
    return config


async def run_probe(runtime: MonitorRuntime, name: str) -> int:
    result = await runtime.pipeline.probe(name)
    _print_json(_as_dict(result))
    healthy = result.dns_resolved and result.http_status is not None and result.http_status < 400
    return 0 if healthy else 1


async def run_add(runtime: MonitorRuntime, name: str) -> int:
    domain = runtime.store.add_domain(name)
    await runtime.dispatcher.emit(WebhookEvent.DOMAIN_CREATED, {"domain": domain.name, "domain_id": domain.id})
    _print_json(_as_dict(domain))
    return 0


def run_list(runtime: MonitorRuntime) -> int:
    domains = runtime.store.list_domains()
    if not domains:
        print("No domains registered.")
        return 0
    for domain in domains:
        expiry = domain.expiry_date or "-"
        status = f"error: {domain.error}" if domain.error else "ok"
        print(f"{domain.id:>4}  {domain.name:<40} expires {expiry:<28} {status}")
    return 0


async def run_refresh(runtime: MonitorRuntime) -> int:
    summary = await runtime.refresh.refresh_all()
    await runtime.dispatcher.drain()
    _print_json(_as_dict(summary))
    return 0 if summary.failed == 0 else 1


async def run_check_all(runtime: MonitorRuntime) -> int:
    results = await runtime.health.check_all()
    await runtime.dispatcher.drain()
    _print_json({str(domain_id): snapshot.to_dict() for domain_id, snapshot in results.items()})
    return 0 if not any(s.is_failed() for s in results.values()) else 1


async def run_alerts(runtime: MonitorRuntime) -> int:
    found = await runtime.alerts.run()
    await runtime.dispatcher.drain()
    _print_json([_as_dict(item) for item in found])
    return 0


async def run_uptime(runtime: MonitorRuntime) -> int:
    results = await runtime.uptime.check_all()
    await runtime.dispatcher.drain()
    _print_json([{**_as_dict(s), "current_status": s.current_status.value} for s in runtime.uptime.stats()])
    return 0 if all(c.is_up for c in results.values()) else 1


async def run_cleanup(runtime: MonitorRuntime) -> int:
    _print_json(_as_dict(await runtime.cleanup.run()))
    return 0


async def run_service(runtime: MonitorRuntime) -> int:
    """Run the scheduler until SIGINT/SIGTERM."""
    scheduler = create_scheduler(runtime)
    scheduler.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows; Ctrl+C still raises KeyboardInterrupt
            pass

    status = scheduler.status()
    print(f"Scheduler running: {json.dumps(status.schedules)}")
    try:
        await stop.wait()
    finally:
        await scheduler.shutdown()
        await runtime.dispatcher.drain()
    return 0


def cmd_validate_cron(args: argparse.Namespace) -> int:
    """Handle the 'validate-cron' command."""
    try:
        schedule = CronParser().parse(args.expression)
        times = schedule.next_times(datetime.now(), args.count)
    except CronParseError as e:
        print(f"Invalid cron expression: {e}", file=sys.stderr)
        return 1

    print(f"Valid: {schedule.original_expression}")
    for t in times:
        print(f"  {t.strftime('%Y-%m-%d %H:%M')}")
    return 0


def _runtime_command(args: argparse.Namespace) -> int:
    """Build the runtime and run the selected async command."""
    try:
        config = _load(args)
        runtime = build_runtime(config, verbose=args.verbose)
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if config.simulation_mode and args.verbose:
        print("Simulation mode: no WHOIS or alert channel requests are made")

    try:
        if args.command == "list":
            return run_list(runtime)
        handlers = {
            "probe": lambda: run_probe(runtime, args.name),
            "add": lambda: run_add(runtime, args.name),
            "refresh": lambda: run_refresh(runtime),
            "check-all": lambda: run_check_all(runtime),
            "alerts": lambda: run_alerts(runtime),
            "uptime": lambda: run_uptime(runtime),
            "cleanup": lambda: run_cleanup(runtime),
            "serve": lambda: run_service(runtime),
        }
        return asyncio.run(handlers[args.command]())
    except DomainMonitorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--env-file",
        help="Path to a .env file to load",
    )
    common.add_argument(
        "--state-file",
        help="Path to the JSON state file",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulation mode - no WHOIS or alert channel requests",
    )

    parser = argparse.ArgumentParser(
        prog="domain-monitor",
        description="Domain registration and health monitor",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    probe_parser = subparsers.add_parser("probe", parents=[common], help="Probe DNS, HTTP and TLS for a domain")
    probe_parser.add_argument("name", help="Domain to probe (e.g., example.com)")
    probe_parser.set_defaults(func=_runtime_command)

    add_parser = subparsers.add_parser("add", parents=[common], help="Register a domain")
    add_parser.add_argument("name", help="Domain to register")
    add_parser.set_defaults(func=_runtime_command)

    list_parser = subparsers.add_parser("list", parents=[common], help="List registered domains")
    list_parser.set_defaults(func=_runtime_command)

    refresh_parser = subparsers.add_parser("refresh", parents=[common], help="Refresh WHOIS data for all domains")
    refresh_parser.set_defaults(func=_runtime_command)

    check_all_parser = subparsers.add_parser("check-all", parents=[common], help="Run the health check sweep")
    check_all_parser.set_defaults(func=_runtime_command)

    alerts_parser = subparsers.add_parser("alerts", parents=[common], help="Run the expiry alert sweep")
    alerts_parser.set_defaults(func=_runtime_command)

    uptime_parser = subparsers.add_parser("uptime", parents=[common], help="Run the up/down checks once")
    uptime_parser.set_defaults(func=_runtime_command)

    cleanup_parser = subparsers.add_parser("cleanup", parents=[common], help="Prune old health and uptime history")
    cleanup_parser.set_defaults(func=_runtime_command)

    cron_parser = subparsers.add_parser("validate-cron", help="Validate a cron expression")
    cron_parser.add_argument("expression", help="Cron expression, e.g. '0 2 * * 0'")
    cron_parser.add_argument(
        "--count", "-n",
        type=int,
        default=5,
        help="Number of upcoming fire times to show (default: 5)",
    )
    cron_parser.set_defaults(func=cmd_validate_cron)

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Run the scheduler until interrupted")
    serve_parser.set_defaults(func=_runtime_command)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
