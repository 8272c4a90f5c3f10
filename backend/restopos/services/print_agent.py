"""
Printer agent side of the print queue.

The agent polls the API for jobs, looks up the printer for the job's station
in a ``PrinterConfigSnapshot`` and hands the content to a transport. Printer
configuration is an immutable snapshot: ``PrinterConfigHolder.refresh`` builds
a new one and swaps the reference, and every dispatch receives the snapshot it
should use as an argument.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_STATION = "default"


@dataclass(frozen=True)
class PrinterTarget:
    station: str
    name: str
    address: str
    paper_width: int = 42


@dataclass(frozen=True)
class PrinterConfigSnapshot:
    version: int
    printers: Mapping[str, PrinterTarget]
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def for_station(self, station: str) -> Optional[PrinterTarget]:
        return self.printers.get(station) or self.printers.get(DEFAULT_STATION)


EMPTY_CONFIG = PrinterConfigSnapshot(version=0, printers=MappingProxyType({}))

ConfigLoader = Callable[[], Dict[str, PrinterTarget]]
Transport = Callable[[PrinterTarget, str], None]


class PrinterConfigHolder:
    """Owns the current printer configuration and refreshes it periodically."""

    def __init__(
        self,
        loader: ConfigLoader,
        refresh_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._refresh_seconds = refresh_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = EMPTY_CONFIG
        self._loaded_at: Optional[float] = None

    @property
    def current(self) -> PrinterConfigSnapshot:
        return self._snapshot

    def refresh(self) -> PrinterConfigSnapshot:
        """Load configuration and swap in a new snapshot.

        A failing loader keeps the previous snapshot in place.
        """
        with self._lock:
            try:
                printers = dict(self._loader())
            except Exception as e:
                logger.error(f"Printer config refresh failed, keeping version {self._snapshot.version}: {e}")
                return self._snapshot
            self._snapshot = PrinterConfigSnapshot(
                version=self._snapshot.version + 1,
                printers=MappingProxyType(printers),
            )
            self._loaded_at = self._clock()
            logger.info(f"Printer config version {self._snapshot.version} loaded ({len(printers)} printers)")
            return self._snapshot

    def maybe_refresh(self) -> PrinterConfigSnapshot:
        if self._loaded_at is None or self._clock() - self._loaded_at >= self._refresh_seconds:
            return self.refresh()
        return self._snapshot


@dataclass(frozen=True)
class DispatchResult:
    job_id: int
    ok: bool
    error: Optional[str] = None
    printer: Optional[str] = None


def dispatch_job(job: Mapping[str, Any], config: PrinterConfigSnapshot, transport: Transport) -> DispatchResult:
    """Send one claimed job to the printer configured for its station."""
    target = config.for_station(job["station"])
    if target is None:
        return DispatchResult(job_id=job["id"], ok=False, error=f"No printer configured for station '{job['station']}'")
    try:
        transport(target, job["content"])
    except Exception as e:
        logger.warning(f"Printer {target.name} failed job {job['id']}: {e}")
        return DispatchResult(job_id=job["id"], ok=False, error=str(e), printer=target.name)
    return DispatchResult(job_id=job["id"], ok=True, printer=target.name)


class HttpPrintQueue:
    """Print queue client over the REST API."""

    def __init__(self, client: httpx.Client, base_path: str = "/api/v1/print-jobs"):
        self.client = client
        self.base_path = base_path

    def claim(self, agent_id: str, stations: Optional[list] = None) -> Optional[Dict[str, Any]]:
        response = self.client.post(
            f"{self.base_path}/claim",
            json={"agentId": agent_id, "stations": stations or []},
        )
        response.raise_for_status()
        return response.json().get("job")

    def ack(self, job_id: int) -> None:
        self.client.post(f"{self.base_path}/{job_id}/printed").raise_for_status()

    def fail(self, job_id: int, error: str) -> None:
        self.client.post(f"{self.base_path}/{job_id}/failed", json={"error": error}).raise_for_status()


class PrintAgent:
    """Polls the queue and dispatches jobs using the current config snapshot."""

    def __init__(
        self,
        queue: HttpPrintQueue,
        config: PrinterConfigHolder,
        transport: Transport,
        agent_id: str,
        poll_interval: float = 2.0,
    ):
        self.queue = queue
        self.config = config
        self.transport = transport
        self.agent_id = agent_id
        self.poll_interval = poll_interval

    def run_once(self) -> Optional[DispatchResult]:
        snapshot = self.config.maybe_refresh()
        stations = [s for s in snapshot.printers if s != DEFAULT_STATION]
        if DEFAULT_STATION in snapshot.printers:
            stations = []
        job = self.queue.claim(self.agent_id, stations)
        if job is None:
            return None

        result = dispatch_job(job, snapshot, self.transport)
        if result.ok:
            self.queue.ack(result.job_id)
        else:
            self.queue.fail(result.job_id, result.error or "unknown error")
        return result

    def run_forever(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                result = self.run_once()
            except httpx.HTTPError as e:
                logger.warning(f"Print queue unreachable: {e}")
                result = None
            if result is None:
                stop.wait(self.poll_interval)
