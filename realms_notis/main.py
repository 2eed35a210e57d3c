"""
Main Orchestration Script for the Realms Notification System.

Two periodic tasks share one state store:
1. Poll cycle: fetch governance + proposals, diff against the store, notify, persist
2. Reminder sweep: remind the channel about proposals that are still voting

Commands:
    realms-notis run            # Continuous (default)
    realms-notis once           # One poll cycle and one reminder sweep
    realms-notis seed           # Record current proposals without notifying
    realms-notis sweep          # One reminder sweep
    realms-notis config new     # Write a .env template
    realms-notis config check   # Validate and print the effective settings
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional

from .api.client import SolanaRPCClient
from .config import ENV_TEMPLATE, GOVERNANCE_PROGRAM_ID, Config, config as default_config
from .event_processor import diff_snapshot, find_disappeared
from .exceptions import (
    ConfigurationError,
    DecodeError,
    NotificationDeliveryError,
    StorageError,
    TransportError,
)
from .logging_config import setup_logging
from .models import CycleReport, GovernanceRecord, GovernanceSnapshot, RealmConfig
from .notifier import AppriseSink, format_status_message
from .proposal_collector import ProposalCollector
from .scheduler import NotificationScheduler
from .state_manager import StateStore

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs ``action`` every ``interval`` seconds on its own thread.

    The next run is scheduled only after the previous one returned, so a
    task never overlaps with itself.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], object], stop_event: threading.Event):
        self.name = name
        self.interval = interval
        self.action = action
        self._stop = stop_event
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> None:
        try:
            self.action()
        except Exception as e:
            # Keep the task alive; the next tick re-derives any missed work
            logger.error(f"Task '{self.name}' failed: {e}", exc_info=True)

    def _loop(self) -> None:
        logger.info(f"Task '{self.name}' started (every {self.interval}s)")
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval):
                break
        logger.info(f"Task '{self.name}' stopped")

    def start(self) -> None:
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


class PollLoop:
    """
    Drives the fetch-diff-notify cycle and the reminder sweep.

    Args:
        collector: Chain snapshot source with ``fetch(realm_config)``
        store: Durable store handle
        scheduler: Notification scheduler
        realm_config: Realm scope being polled
        poll_interval: Seconds between poll cycles
        reminder_interval: Seconds between reminder sweeps
    """

    def __init__(
        self,
        collector: ProposalCollector,
        store: StateStore,
        scheduler: NotificationScheduler,
        realm_config: RealmConfig,
        poll_interval: float,
        reminder_interval: float
    ):
        self.collector = collector
        self.store = store
        self.scheduler = scheduler
        self.realm_config = realm_config
        self.poll_interval = poll_interval
        self.reminder_interval = reminder_interval
        self.stop_event = threading.Event()
        self._tasks: List[PeriodicTask] = []

    def verify_realm(self) -> None:
        """
        Bind the store to this realm, refusing a store seeded for another one.

        Raises:
            StorageError: If the store belongs to a different realm
        """
        self.store.put_realm_config(self.realm_config)

    def _sync_governance(self, governance: GovernanceSnapshot) -> None:
        try:
            existing = self.store.get_governance(governance.key)
            if existing is None or existing.differs_from(governance):
                self.store.put_governance(GovernanceRecord.from_snapshot(governance, self.scheduler.clock()))
                logger.info(f"Updated governance {governance.key}: {governance.proposals_count} proposals")
        except StorageError as e:
            logger.error(f"Failed to persist governance {governance.key}: {e}")

    def run_cycle(self) -> Optional[CycleReport]:
        """
        Run one fetch-diff-notify cycle.

        Returns:
            CycleReport, or None when the chain snapshot could not be fetched
        """
        logger.info("=" * 80)
        logger.info("Poll cycle: fetching realm state")
        logger.info("=" * 80)

        try:
            snapshot = self.collector.fetch(self.realm_config)
        except (TransportError, DecodeError) as e:
            logger.error(f"Failed to fetch chain snapshot, skipping this cycle: {e}")
            return None

        self._sync_governance(snapshot.governance)

        stored = self.store.proposals()
        transitions = diff_snapshot(snapshot.proposals, stored)

        disappeared = find_disappeared(snapshot.proposals, stored)
        for key in disappeared:
            if stored[key].is_active:
                logger.warning(f"Voting proposal {key} missing from snapshot, keeping it tracked")
            else:
                logger.debug(f"Proposal {key} missing from snapshot")

        report = self.scheduler.process_transitions(transitions, snapshot.proposals, snapshot.mint_decimals)
        report.disappeared = disappeared
        return report

    def run_reminder_sweep(self) -> CycleReport:
        return self.scheduler.sweep_reminders()

    def seed(self) -> int:
        """
        Record the current realm state as the baseline, without notifications.

        Raises:
            TransportError, DecodeError: If the chain snapshot cannot be fetched
        """
        self.verify_realm()
        snapshot = self.collector.fetch(self.realm_config)
        self._sync_governance(snapshot.governance)
        return self.scheduler.record_baseline(snapshot.proposals, snapshot.mint_decimals)

    def check_node(self) -> None:
        """Log the RPC node health; an unhealthy node is not fatal."""
        try:
            logger.info(f"RPC node health: {self.collector.client.get_health()}")
        except TransportError as e:
            logger.warning(f"RPC node health check failed: {e}")

    def announce(self) -> None:
        """Post the startup status message."""
        try:
            self.scheduler.sink.send(self.scheduler.channel_id, format_status_message(self.realm_config.realm_key))
        except NotificationDeliveryError as e:
            logger.warning(f"Failed to send status message: {e}")

    def start(self) -> None:
        self.stop_event.clear()
        self._tasks = [
            PeriodicTask("poll-cycle", self.poll_interval, self.run_cycle, self.stop_event),
            PeriodicTask("reminder-sweep", self.reminder_interval, self.run_reminder_sweep, self.stop_event),
        ]
        for task in self._tasks:
            task.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        for task in self._tasks:
            task.join(timeout)

    def run_forever(self) -> None:
        """Start both tasks and block until SIGINT/SIGTERM."""
        def _handle_signal(signum, _frame):
            logger.warning(f"Caught signal {signal.Signals(signum).name}, shutting down")
            self.stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        self.start()
        while not self.stop_event.wait(1.0):
            pass
        self.stop(timeout=30)
        logger.info("Shutdown finalized, goodbye...")


def build_poll_loop(settings: Config) -> PollLoop:
    """
    Wire the collaborators from configuration.

    Raises:
        ConfigurationError: If the configuration is invalid
        StorageError: If the state file cannot be opened
    """
    problems = settings.validate()
    if problems:
        raise ConfigurationError("; ".join(problems))

    realm_config = settings.realm_config()
    client = SolanaRPCClient(
        settings.RPC_URL,
        timeout=settings.RPC_TIMEOUT,
        max_retries=settings.RPC_MAX_RETRIES
    )
    store = StateStore(settings.STATE_FILE_PATH)
    scheduler = NotificationScheduler(
        store=store,
        sink=AppriseSink(timeout=settings.NOTIFICATION_TIMEOUT),
        channel_id=settings.NOTIFICATION_URL,
        notification_frequency=settings.notification_frequency,
        ui_base_url=settings.UI_BASE_URL
    )
    return PollLoop(
        collector=ProposalCollector(client, settings.GOVERNANCE_PROGRAM_ID),
        store=store,
        scheduler=scheduler,
        realm_config=realm_config,
        poll_interval=settings.POLL_INTERVAL,
        reminder_interval=settings.REMINDER_SWEEP_INTERVAL
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="realms-notis",
        description="Watch a governance realm and notify a channel about proposals in voting"
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="run the poll loop and reminder sweep continuously")
    subparsers.add_parser("once", help="run one poll cycle and one reminder sweep")
    subparsers.add_parser("seed", help="record current proposals without sending notifications")
    subparsers.add_parser("sweep", help="run one reminder sweep")

    config_parser = subparsers.add_parser("config", help="configuration management commands")
    config_commands = config_parser.add_subparsers(dest="config_command")
    new_parser = config_commands.add_parser("new", help="write a .env template")
    new_parser.add_argument("--path", default=".env", help="where to write the template")
    new_parser.add_argument("--force", action="store_true", help="overwrite an existing file")
    config_commands.add_parser("check", help="validate and print the effective settings")

    return parser


def config_new(path: str, force: bool = False) -> int:
    target = Path(path)
    if target.exists() and not force:
        logger.error(f"{target} already exists, use --force to overwrite")
        return 1
    target.write_text(ENV_TEMPLATE.format(program_id=GOVERNANCE_PROGRAM_ID))
    print(f"Wrote configuration template to {target}")
    return 0


def config_check(settings: Config) -> int:
    for name, value in sorted(settings.describe().items()):
        print(f"{name}={value}")
    problems = settings.validate()
    for problem in problems:
        print(f"error: {problem}", file=sys.stderr)
    return 1 if problems else 0


def run_command(args: argparse.Namespace, settings: Config) -> int:
    command = args.command or "run"

    if command == "config":
        if args.config_command == "new":
            return config_new(args.path, args.force)
        if args.config_command == "check":
            return config_check(settings)
        raise ConfigurationError("config requires a subcommand: new or check")

    loop = build_poll_loop(settings)

    if command == "seed":
        recorded = loop.seed()
        logger.info(f"Seed complete: {recorded} proposals recorded")
        return 0

    loop.verify_realm()

    if command == "sweep":
        loop.run_reminder_sweep()
        return 0

    if command == "once":
        report = loop.run_cycle()
        loop.run_reminder_sweep()
        return 0 if report is not None else 1

    logger.info("Starting Realms Notification System...")
    logger.info(f"Realm: {loop.realm_config.realm_key}")
    logger.info(f"Governance: {loop.realm_config.governance_key}")
    loop.check_node()
    if settings.DEBUG_LOG:
        loop.announce()
    loop.run_forever()
    return 0


def main(argv: Optional[List[str]] = None, settings: Optional[Config] = None) -> int:
    """
    Entry point for the ``realms-notis`` command.

    Returns:
        Process exit code
    """
    settings = settings or default_config
    args = build_parser().parse_args(argv)

    if args.command != "config":
        setup_logging(settings)

    try:
        return run_command(args, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully...")
        return 0
    except (ConfigurationError, StorageError, TransportError, DecodeError) as e:
        logger.error("=" * 80)
        logger.error("FATAL ERROR in Realms Notification System")
        logger.error("=" * 80)
        logger.error(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
