"""Main entry point for the Application Notifier service."""

import argparse
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from notifier.applications import ApplicationService
from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.loader import load_config
from notifier.config.models import AppConfig
from notifier.logging import get_logger
from notifier.logging.config import configure_logging
from notifier.notifications import (
    DeliveryWorker,
    EmailTransport,
    NotificationQueue,
    NotificationService,
    TemplateRenderer,
    build_transport,
)
from notifier.persistence.database import close_database, init_database
from notifier.ratelimit import RateLimiter, build_counter_store, windows_from_config
from notifier.scheduler import SchedulerService

logger = get_logger(__name__, component="cli")


@dataclass
class Runtime:
    """Wired service graph shared by the CLI and embedding applications."""

    queue: NotificationQueue
    worker: DeliveryWorker
    notifications: NotificationService
    applications: ApplicationService
    limiter: RateLimiter
    transport: EmailTransport

    def close(self) -> None:
        self.worker.shutdown()
        self.transport.close()
        self.limiter.store.close()


def build_runtime(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    transport: Optional[EmailTransport] = None,
    limiter: Optional[RateLimiter] = None,
) -> Runtime:
    """Wire renderer, queue, worker and services from configuration.

    The database must already be initialized.
    """
    renderer = TemplateRenderer(app_url=app_config.email.app_url)
    queue = NotificationQueue(renderer, max_attempts=app_config.delivery.max_attempts)

    if limiter is None:
        limiter = RateLimiter(
            build_counter_store(env_config.redis_url),
            windows_from_config(app_config.rate_limits),
        )
    if transport is None:
        transport = build_transport(
            env_config,
            app_config.email,
            timeout=app_config.delivery.transport_timeout_seconds,
        )

    worker = DeliveryWorker.from_config(queue, transport, limiter, app_config.delivery)
    notifications = NotificationService(queue, worker=worker)
    applications = ApplicationService(publisher=notifications.handle_event)

    return Runtime(
        queue=queue,
        worker=worker,
        notifications=notifications,
        applications=applications,
        limiter=limiter,
        transport=transport,
    )


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > Environment > Config.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def load_digest_file(path: Path) -> Dict[int, List[Dict[str, Any]]]:
    """Read a digest file mapping users to their matched jobs.

    Format::

        digests:
          - user_id: 1
            jobs:
              - {title: "Maths Teacher", organization: "Central School", id: 7}

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read digest file: {e}", source=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in digest file: {e}", source=str(path)) from e

    entries = content.get("digests") if isinstance(content, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationError(
            f"Digest file {path} must contain a 'digests' list",
            suggestions=["Each entry needs a user_id and a list of jobs"],
            source=str(path),
        )

    digests: Dict[int, List[Dict[str, Any]]] = {}
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "user_id" not in entry:
            raise ConfigurationError(f"Digest entry #{index} is missing user_id", source=str(path))
        digests[int(entry["user_id"])] = list(entry.get("jobs") or [])
    return digests


def drain(runtime: Runtime, interval_seconds: float) -> int:
    """Tick until the queue is empty; returns the number of failed notifications."""
    failed = 0
    while True:
        result = runtime.worker.tick()
        failed += result.failed
        if len(runtime.queue) == 0:
            return failed
        time.sleep(interval_seconds)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the Application Notifier.

    With ``--drain-once`` the CLI delivers what is queued (such as a
    ``--digest`` file) and exits. Without it the delivery worker runs on a
    schedule, but the queue lives in this process and nothing outside it can
    enqueue, so the daemon only delivers what it queued itself. Hosts that publish
    application events should embed ``build_runtime`` and drive
    ``runtime.worker`` instead.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    load_dotenv()

    start_time = time.time()
    parser = argparse.ArgumentParser(
        description="Application Notifier - queued, rate-limited email delivery for application updates",
        epilog=(
            "Without --drain-once the notifier runs as a daemon over an in-process queue. "
            "Other processes cannot enqueue into it; applications that publish status "
            "events should embed build_runtime() and run its worker themselves."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    parser.add_argument(
        "--drain-once",
        action="store_true",
        help="Process the queue until it is empty, then exit (exit code 1 if any notification failed)",
    )
    parser.add_argument(
        "--digest",
        type=Path,
        default=None,
        help="Queue weekly job alert digests from a YAML file before processing",
    )

    args = parser.parse_args(argv)
    runtime: Optional[Runtime] = None

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Application Notifier starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "drain_once": args.drain_once,
            },
        )

        init_database(env_config.database_url)
        runtime = build_runtime(app_config, env_config)

        logger.info(
            "Services initialized",
            extra={
                "event": "services.initialized",
                "transport": runtime.transport.name,
                "tick_interval_seconds": app_config.delivery.tick_interval_seconds,
            },
        )

        if args.digest:
            queued = runtime.notifications.send_weekly_digest(load_digest_file(args.digest))
            logger.info(
                f"Queued {sum(1 for v in queued.values() if v)} digest emails",
                extra={"event": "service.digest.queued", "users": len(queued)},
            )

        if args.drain_once:
            failed = drain(runtime, app_config.delivery.tick_interval_seconds)
            logger.info(
                "Queue drained",
                extra={
                    "event": "service.drain.completed",
                    "failed": failed,
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )
            return 1 if failed else 0

        stop_requested = threading.Event()
        scheduler_service = SchedulerService(
            worker=runtime.worker,
            interval_seconds=app_config.delivery.tick_interval_seconds,
        )

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            stop_requested.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler_service.start()
        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started"},
        )

        stop_requested.wait()
        scheduler_service.shutdown(wait=True)

        logger.info(
            "Application Notifier stopped",
            extra={
                "event": "service.stopping",
                "uptime_seconds": round(time.time() - start_time, 2),
            },
        )
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            exc_info=True,
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        return 1
    finally:
        if runtime is not None:
            runtime.close()
        close_database()


if __name__ == "__main__":
    sys.exit(main())
