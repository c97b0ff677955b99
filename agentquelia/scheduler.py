from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from typing import Any, Callable, Literal, Protocol

from .config import AgentConfig
from .errors import SourceError, TransportError
from .sources import Source, build_source
from .transport import DeliveryOutcome, RetryPolicy, SupabaseClient

logger = logging.getLogger("agentquelia.scheduler")

SchedulerState = Literal["running", "stopped"]


class Transport(Protocol):
    def deliver(self, credential: str, value: float, unit: str) -> None: ...


def shutdown_signals(platform: str = sys.platform) -> tuple[signal.Signals, ...]:
    """OS signals that request a graceful stop. Windows only delivers SIGINT."""

    if platform == "win32":
        return (signal.SIGINT,)
    return (signal.SIGINT, signal.SIGTERM)


class ShutdownSignal:
    """One-shot broadcast used to stop the scheduler between cycles.

    The first set() wins; later calls keep that reason.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.reason: str | None = None

    def set(self, reason: str = "requested") -> None:
        with self._lock:
            if self.reason is None:
                self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class Scheduler:
    """Fixed-interval poll/deliver loop.

    Shutdown is only observed at the wait point between cycles; a cycle that
    has started (including retry sleeps) always runs to completion.
    """

    def __init__(
        self,
        config: AgentConfig,
        source: Source,
        transport: Transport,
        shutdown: ShutdownSignal,
        *,
        retry_policy: RetryPolicy | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.source = source
        self.transport = transport
        self.shutdown = shutdown
        self.retry_policy = retry_policy or RetryPolicy.from_settings(config.retry)
        self._monotonic = monotonic
        self.state: SchedulerState = "running"
        self.cycles_run = 0

    @property
    def interval_s(self) -> float:
        return float(self.config.agent.polling_interval_secs)

    def run(self) -> None:
        if self.state == "stopped":
            return

        logger.info(
            "Starting scheduler (instance_id=%s interval_s=%s source=%s)",
            self.config.agent.instance_id,
            self.config.agent.polling_interval_secs,
            self.source.source_id,
            extra={
                "fields": {
                    "instance_id": self.config.agent.instance_id,
                    "interval_secs": self.config.agent.polling_interval_secs,
                    "source": self.source.source_id,
                }
            },
        )

        next_tick = self._monotonic()
        try:
            while True:
                delay = max(0.0, next_tick - self._monotonic())
                if self.shutdown.wait(delay):
                    reason = getattr(self.shutdown, "reason", None)
                    logger.info(
                        "Shutdown signal received, stopping scheduler (reason=%s)",
                        reason,
                        extra={"fields": {"reason": reason, "cycles_run": self.cycles_run}},
                    )
                    break

                self.poll_and_send()
                self.cycles_run += 1

                finished = self._monotonic()
                next_tick += self.interval_s
                if next_tick < finished:
                    # Overran the slot: push the next tick a full interval out instead of bursting.
                    logger.debug("cycle overran interval by %.3fs", finished - next_tick)
                    next_tick = finished + self.interval_s
        finally:
            self.state = "stopped"

    def poll_and_send(self) -> DeliveryOutcome | None:
        """Run one cycle. Returns None when the source read failed."""

        source_id = self.source.source_id
        logger.info("Polling data source %s", source_id, extra={"fields": {"source": source_id}})

        try:
            reading = self.source.read()
        except SourceError as exc:
            logger.warning(
                "Failed to read value from source %s: %s",
                source_id,
                exc,
                extra={"fields": {"source": source_id, "error": str(exc), "kind": exc.kind}},
            )
            return None
        except Exception:
            logger.exception("Unexpected error reading source %s", source_id)
            return None

        logger.info(
            "Read value from source: %s %s (%s)",
            reading.value,
            reading.unit,
            reading.source_id,
            extra={"fields": {"value": reading.value, "unit": reading.unit, "source": reading.source_id}},
        )

        credential = self.config.poi.api_key

        def _deliver() -> None:
            self.transport.deliver(credential, reading.value, reading.unit)

        try:
            self.retry_policy.call(_deliver)
        except TransportError as exc:
            outcome = DeliveryOutcome.from_error(exc)
            logger.error(
                "Failed to send data after retries: %s (value=%s)",
                exc,
                reading.value,
                extra={"fields": {"error": str(exc), "value": reading.value, "outcome": outcome.status}},
            )
            return outcome
        except Exception as exc:
            logger.exception("Unexpected error delivering reading (value=%s)", reading.value)
            return DeliveryOutcome(status="terminal_failure", reason=f"{type(exc).__name__}: {exc}")

        logger.info(
            "Data sent successfully: %s %s",
            reading.value,
            reading.unit,
            extra={"fields": {"value": reading.value, "unit": reading.unit}},
        )
        return DeliveryOutcome.success()


class AgentRunner:
    """Owns the shutdown signal, the OS signal handlers and the worker thread."""

    def __init__(
        self,
        config: AgentConfig,
        *,
        source: Source | None = None,
        transport: Transport | None = None,
        shutdown: ShutdownSignal | None = None,
    ) -> None:
        self.config = config
        self.shutdown_signal = shutdown or ShutdownSignal()
        self._source = source
        self._transport = transport

    def build_scheduler(self) -> Scheduler:
        source = self._source or build_source(self.config.source)
        transport = self._transport or SupabaseClient(self.config.supabase)
        return Scheduler(self.config, source, transport, self.shutdown_signal)

    def run(self) -> None:
        scheduler = self.build_scheduler()
        previous = self._install_signal_handlers()
        worker = threading.Thread(target=scheduler.run, name="agentquelia-scheduler")
        worker.start()
        try:
            while worker.is_alive():
                worker.join(timeout=0.5)
        finally:
            self._restore_signal_handlers(previous)

    def shutdown(self, reason: str = "requested") -> None:
        self.shutdown_signal.set(reason)

    def _handle_signal(self, signum: int, frame: Any) -> None:  # noqa: ARG002
        name = signal.Signals(signum).name
        logger.info("Received %s", name, extra={"fields": {"signal": name}})
        self.shutdown_signal.set(name)

    def _install_signal_handlers(self) -> dict[int, Any]:
        # signal.signal only works from the main thread.
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous: dict[int, Any] = {}
        for sig in shutdown_signals():
            previous[sig] = signal.signal(sig, self._handle_signal)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, Any]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
