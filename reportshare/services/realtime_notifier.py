"""Fire-and-forget delivery of recent-report events.

Synopsis:
``RealtimeNotifier.emit`` enqueues and returns at once; a daemon worker hands
each event to a transport with bounded, linearly backed-off retries. Full queues
and exhausted retries drop the event with a log line. Nothing here raises into
the caller's request.

Glossary:
- Transport: Sink that performs one delivery attempt (webhook relay or log).
- Synchronous mode: Deliver inline on ``emit``; used by tests and CLI runs.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import requests

from ..utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)

NEW_RECENT_REPORT = "newRecentReport"
UPDATED_RECENT_REPORT = "updatedRecentReport"


@dataclass
class RealtimeEvent:
    name: str
    payload: dict
    emitted_at: Any = field(default_factory=utc_now)
    attempts: int = 0


class LoggingTransport:
    """Default sink when no relay is configured."""

    def send(self, event: RealtimeEvent) -> None:
        logger.info("Realtime event %s: %s", event.name, event.payload.get("slug"))


class WebhookTransport:
    """POSTs each event as JSON to a relay that fans out to connected clients."""

    def __init__(self, url: str, *, timeout: float = 3.0, session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def send(self, event: RealtimeEvent) -> None:
        body = {
            "event": event.name,
            "payload": event.payload,
            "emitted_at": event.emitted_at.isoformat() if event.emitted_at else None,
        }
        response = self._session.post(self.url, json=body, timeout=self.timeout)
        response.raise_for_status()

    def close(self) -> None:
        self._session.close()


# --- RealtimeNotifier ---
# Purpose: Decouple realtime emission from the request lifecycle.
# Inputs: Event name plus DisplayReport payload.
# Outputs: Best-effort delivery; counters exposed through stats().
class RealtimeNotifier:
    _STOP = object()

    def __init__(
        self,
        transport=None,
        *,
        max_queue_size: int = 256,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        synchronous: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport or LoggingTransport()
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self.synchronous = synchronous
        self._sleep = sleep
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, int(max_queue_size)))
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self._stopped = False
        self._counters = {"emitted": 0, "delivered": 0, "dropped": 0, "failed_attempts": 0}

    def emit(self, name: str, payload: Mapping[str, Any]) -> bool:
        """Queue an event. Returns False when it was dropped."""
        if self._stopped:
            logger.warning("Realtime notifier stopped; dropping %s", name)
            self._bump("dropped")
            return False

        event = RealtimeEvent(name=name, payload=dict(payload))
        self._bump("emitted")
        if self.synchronous:
            return self._deliver(event)

        self._ensure_worker()
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("Realtime queue full; dropping %s for %s", name, payload.get("slug"))
            self._bump("dropped")
            return False
        return True

    def _bump(self, counter: str) -> None:
        with self._lock:
            self._counters[counter] += 1

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run, name="reportshare-realtime", daemon=True
            )
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, event: RealtimeEvent) -> bool:
        while event.attempts < self.max_attempts:
            event.attempts += 1
            try:
                self.transport.send(event)
            except Exception as exc:
                self._bump("failed_attempts")
                logger.warning(
                    "Realtime delivery of %s failed (attempt %s/%s): %s",
                    event.name,
                    event.attempts,
                    self.max_attempts,
                    exc,
                )
                if event.attempts < self.max_attempts and self.backoff_seconds:
                    self._sleep(self.backoff_seconds * event.attempts)
                continue
            self._bump("delivered")
            return True

        logger.error("Dropping realtime event %s after %s attempts", event.name, event.attempts)
        self._bump("dropped")
        return False

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued events are processed. Returns False on timeout."""
        if self.synchronous or self._worker is None:
            return True
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Drain outstanding events, then join the worker."""
        if self._stopped:
            return
        self._stopped = True
        worker = self._worker
        if worker is not None and worker.is_alive():
            try:
                self._queue.put(self._STOP, timeout=timeout)
            except queue.Full:
                logger.warning("Realtime queue still full at shutdown; worker left running")
                return
            worker.join(timeout)
            if worker.is_alive():
                logger.warning("Realtime worker did not stop within %ss", timeout)
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()

    def stats(self) -> dict:
        with self._lock:
            stats = dict(self._counters)
        stats["queued"] = self._queue.qsize()
        stats["synchronous"] = self.synchronous
        return stats


def build_notifier(config: Mapping[str, Any], transport=None) -> RealtimeNotifier:
    if transport is None:
        webhook_url = config.get("REALTIME_WEBHOOK_URL")
        if webhook_url:
            transport = WebhookTransport(
                webhook_url, timeout=float(config.get("REALTIME_TIMEOUT_SECONDS", 3.0))
            )
        else:
            transport = LoggingTransport()
    return RealtimeNotifier(
        transport,
        max_queue_size=int(config.get("REALTIME_QUEUE_SIZE", 256)),
        max_attempts=int(config.get("REALTIME_MAX_ATTEMPTS", 3)),
        synchronous=bool(config.get("REALTIME_SYNCHRONOUS", False)),
    )
