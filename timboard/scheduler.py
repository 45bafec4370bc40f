from __future__ import annotations

import logging
import threading
from typing import Optional

from timboard.config_manager import ConfigManager
from timboard.models import SyncConfig, SyncResult
from timboard.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Background trigger for sync passes: once at startup, then on interval or demand."""

    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self.last_result: Optional[SyncResult] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="timboard-sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    def _interval_seconds(self) -> int:
        try:
            return self.config_manager.load().sync.interval_seconds
        except Exception:
            logger.exception("could not read sync interval; using the default")
            return SyncConfig().interval_seconds

    def _tick(self, trigger: str) -> None:
        self.last_result = self.sync_engine.run_once(trigger=trigger)

    def _loop(self) -> None:
        self._tick("startup")
        while not self._stop_event.is_set():
            manual = self._manual_trigger_event.wait(timeout=self._interval_seconds())
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            self._tick("manual" if manual else "scheduled")
