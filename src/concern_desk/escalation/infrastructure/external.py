"""
Escalation External Integrations
================================

- YAML escalation policy with watchdog hot-reload
- APScheduler job running the escalation sweep
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from concern_desk.core.exceptions import ConfigurationException
from concern_desk.escalation.application.services import IEscalationPolicyProvider
from concern_desk.escalation.domain.value_objects import EscalationPolicy
from concern_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for escalation config file changes."""

    def __init__(self, config_manager: "EscalationConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Escalation config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class EscalationConfigManager(IEscalationPolicyProvider):
    """
    Thread-safe escalation policy holder with hot-reload support.

    The watchdog observer thread swaps the policy under a lock; readers get
    an immutable snapshot, so a sweep uses one policy from start to end.
    """

    def __init__(self, policy: Optional[EscalationPolicy] = None):
        self._config: Optional[EscalationPolicy] = policy
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationPolicy:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: file exists but is not a valid policy
        """
        self._path = Path(path)
        try:
            policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid escalation config {self._path}: {e}", {"path": str(self._path)}
            ) from e
        with self._lock:
            self._config = policy
        return policy

    @staticmethod
    def _load_from_file(path: Path) -> EscalationPolicy:
        if not path.exists():
            logger.warning("Escalation config file not found, using defaults", extra={"path": str(path)})
            return EscalationPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return EscalationPolicy(**data)

    def reload(self) -> bool:
        """Reload from file, keeping the current policy if the new one is invalid."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(
                "Failed to reload escalation config, keeping previous policy",
                extra={"path": str(self._path), "error": str(e)},
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("Escalation configuration reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Escalation config file missing, not watching",
                extra={"path": str(self._path)},
            )
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False,
            )
            self._observer.start()
            logger.info("Watching escalation config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call when not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> EscalationPolicy:
        with self._lock:
            if self._config is None:
                self._config = EscalationPolicy()
            return self._config


class SweepScheduler:
    """
    APScheduler wrapper running the escalation sweep on an interval.

    ``max_instances=1`` keeps sweeps from overlapping inside one process;
    cooldown fields keep overlapping sweeps from different processes safe.
    """

    JOB_ID = "escalation_sweep"

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[object]]) -> None:
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="Escalation Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True

        logger.info("Escalation scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
