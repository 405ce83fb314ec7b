"""
Magellan - Discovery Event System.

Structured events emitted by the scanner and the collector. The CLI
subscribes a ConsoleEventPrinter; library callers can subscribe their
own handlers (progress bars, metrics, tests).

Event Flow:
    scan_started -> asset_found* -> scan_complete
    collect_started -> host_started -> host_collected/host_skipped/host_failed
        -> ... -> collect_complete

Workers emit from their own threads, so stats updates are lock guarded
and listeners must be thread safe.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Scan and collect lifecycle events."""
    # Scan lifecycle
    SCAN_STARTED = "scan_started"
    ASSET_FOUND = "asset_found"
    SCAN_COMPLETE = "scan_complete"

    # Collect lifecycle
    COLLECT_STARTED = "collect_started"
    HOST_STARTED = "host_started"
    HOST_COLLECTED = "host_collected"
    HOST_SKIPPED = "host_skipped"
    HOST_FAILED = "host_failed"
    COLLECT_COMPLETE = "collect_complete"

    # Aggregated updates
    STATS_UPDATED = "stats_updated"


@dataclass
class DiscoveryStats:
    """Running counters for the current scan or collect."""
    checked: int = 0
    found: int = 0
    collected: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    status: str = "Ready"


@dataclass
class DiscoveryEvent:
    """Event with type, timestamp and event-specific data."""
    event_type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def target(self) -> str:
        return self.data.get("target", "")


EventCallback = Callable[[DiscoveryEvent], None]


class EventEmitter:
    """
    Event emitter for the scanner and collector.

    Usage:
        emitter = EventEmitter()
        emitter.subscribe(my_handler)
        emitter.subscribe(stats_handler, EventType.STATS_UPDATED)
        emitter.host_collected("https://10.0.0.5:443", "x3000c0s1b0", systems=2)
    """

    def __init__(self):
        self._listeners: List[tuple] = []
        self._stats = DiscoveryStats()
        self._lock = threading.Lock()

    @property
    def stats(self) -> DiscoveryStats:
        return self._stats

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = DiscoveryStats()

    def subscribe(
        self,
        callback: EventCallback,
        event_type: Optional[EventType] = None
    ) -> None:
        """
        Subscribe to events.

        Args:
            callback: Called with each matching DiscoveryEvent
            event_type: Restrict delivery to one event type
        """
        self._listeners.append((callback, event_type))

    def emit(self, event_type: EventType, **data) -> DiscoveryEvent:
        """Emit an event to all subscribed listeners."""
        event = DiscoveryEvent(
            event_type=event_type,
            timestamp=datetime.now(),
            data=data
        )

        for callback, filter_type in list(self._listeners):
            if filter_type is None or filter_type == event_type:
                try:
                    callback(event)
                except Exception as e:
                    # Listener errors never break discovery
                    logger.warning(f"Event listener error: {e}")

        return event

    # =========================================================================
    # Scan events
    # =========================================================================

    def scan_started(self, host_count: int, ports: List[int], concurrency: int, timeout: float) -> None:
        self.reset_stats()
        with self._lock:
            self._stats.total = host_count
            self._stats.status = "Scanning"
        self.emit(
            EventType.SCAN_STARTED,
            host_count=host_count,
            ports=list(ports),
            concurrency=concurrency,
            timeout=timeout,
        )

    def asset_found(self, host: str, port: int, protocol: str = "tcp") -> None:
        with self._lock:
            self._stats.found += 1
        self.emit(
            EventType.ASSET_FOUND,
            target=f"{host}:{port}",
            host=host,
            port=port,
            protocol=protocol,
        )

    def host_checked(self) -> None:
        """Count a scanned host (no event, too noisy)."""
        with self._lock:
            self._stats.checked += 1

    def scan_complete(self, duration_seconds: float) -> None:
        with self._lock:
            self._stats.status = "Complete"
            checked, found = self._stats.checked, self._stats.found
        self.emit(
            EventType.SCAN_COMPLETE,
            checked=checked,
            found=found,
            duration_seconds=duration_seconds,
        )
        self._emit_stats_update()

    # =========================================================================
    # Collect events
    # =========================================================================

    def collect_started(self, asset_count: int, concurrency: int) -> None:
        self.reset_stats()
        with self._lock:
            self._stats.total = asset_count
            self._stats.status = "Collecting"
        self.emit(
            EventType.COLLECT_STARTED,
            asset_count=asset_count,
            concurrency=concurrency,
        )

    def host_started(self, target: str) -> None:
        self.emit(EventType.HOST_STARTED, target=target)

    def host_collected(self, target: str, bmc_id: str, systems: int = 0, managers: int = 0) -> None:
        with self._lock:
            self._stats.collected += 1
        self.emit(
            EventType.HOST_COLLECTED,
            target=target,
            id=bmc_id,
            systems=systems,
            managers=managers,
        )
        self._emit_stats_update()

    def host_skipped(self, target: str, reason: str) -> None:
        with self._lock:
            self._stats.skipped += 1
        self.emit(EventType.HOST_SKIPPED, target=target, reason=reason)
        self._emit_stats_update()

    def host_failed(self, target: str, error: str) -> None:
        with self._lock:
            self._stats.failed += 1
        self.emit(EventType.HOST_FAILED, target=target, error=error)
        self._emit_stats_update()

    def collect_complete(self, duration_seconds: float) -> None:
        with self._lock:
            self._stats.status = "Complete"
            stats = DiscoveryStats(**vars(self._stats))
        self.emit(
            EventType.COLLECT_COMPLETE,
            collected=stats.collected,
            skipped=stats.skipped,
            failed=stats.failed,
            total=stats.total,
            duration_seconds=duration_seconds,
        )
        self._emit_stats_update()

    def _emit_stats_update(self) -> None:
        with self._lock:
            snapshot = dict(vars(self._stats))
        self.emit(EventType.STATS_UPDATED, **snapshot)


# =========================================================================
# Terminal output
# =========================================================================

class ConsoleEventPrinter:
    """
    Prints discovery events to the console.

    Usage:
        printer = ConsoleEventPrinter(verbose=True, color=True)
        emitter.subscribe(printer.handle_event)
    """

    # ANSI color codes
    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "red": "\033[31m",
        "green": "\033[32m",
        "yellow": "\033[33m",
        "cyan": "\033[36m",
    }

    def __init__(
        self,
        verbose: bool = False,
        color: bool = True,
        show_timestamps: bool = False,
    ):
        self.verbose = verbose
        self.color = color
        self.show_timestamps = show_timestamps
        self._print_lock = threading.Lock()

    def _c(self, text: str, *colors: str) -> str:
        """Wrap text in ANSI codes unless color is off."""
        if not self.color:
            return text
        codes = "".join(self.COLORS.get(c, "") for c in colors)
        return f"{codes}{text}{self.COLORS['reset']}"

    def _timestamp(self, event: DiscoveryEvent) -> str:
        if not self.show_timestamps:
            return ""
        return f"[{event.timestamp.strftime('%H:%M:%S')}] "

    def _print(self, text: str = "") -> None:
        with self._print_lock:
            print(text)

    def handle_event(self, event: DiscoveryEvent) -> None:
        """Route an event to its _handle_* method, if any."""
        handler = getattr(self, f"_handle_{event.event_type.value}", None)
        if handler:
            handler(event)

    def _banner(self, title: str, *colors: str) -> None:
        self._print()
        self._print(self._c("=" * 60, *colors))
        self._print(self._c(title, *colors))
        self._print(self._c("=" * 60, *colors))

    def _handle_scan_started(self, event: DiscoveryEvent) -> None:
        data = event.data
        self._banner("BMC SCAN STARTED", "cyan", "bold")
        self._print(f"Hosts: {data['host_count']}")
        self._print(f"Ports: {', '.join(str(p) for p in data['ports'])}")
        self._print(f"Concurrency: {data['concurrency']}  Timeout: {data['timeout']}s")
        self._print()

    def _handle_asset_found(self, event: DiscoveryEvent) -> None:
        if self.verbose:
            status = self._c("OPEN", "green", "bold")
            self._print(f"{self._timestamp(event)}  {status}: {event.target}")

    def _handle_scan_complete(self, event: DiscoveryEvent) -> None:
        data = event.data
        self._banner("SCAN COMPLETE", "green", "bold")
        self._print(f"Hosts Checked: {data['checked']}")
        self._print(f"Open: {self._c(str(data['found']), 'green')}")
        self._print(f"Duration: {data['duration_seconds']:.1f}s")
        self._print()

    def _handle_collect_started(self, event: DiscoveryEvent) -> None:
        data = event.data
        self._banner("BMC COLLECTION STARTED", "cyan", "bold")
        self._print(f"Assets: {data['asset_count']}  Concurrency: {data['concurrency']}")
        self._print()

    def _handle_host_started(self, event: DiscoveryEvent) -> None:
        if self.verbose:
            self._print(f"{self._timestamp(event)}  Crawling: {event.target}")

    def _handle_host_collected(self, event: DiscoveryEvent) -> None:
        data = event.data
        status = self._c("OK", "green", "bold")
        detail = f"{data['id']} ({data['systems']} systems, {data['managers']} managers)"
        self._print(f"{self._timestamp(event)}  {status}: {event.target} -> {detail}")

    def _handle_host_skipped(self, event: DiscoveryEvent) -> None:
        status = self._c("SKIPPED", "yellow", "bold")
        self._print(f"{self._timestamp(event)}  {status}: {event.target} - {event.data['reason']}")

    def _handle_host_failed(self, event: DiscoveryEvent) -> None:
        status = self._c("FAILED", "red", "bold")
        error = event.data.get("error", "Unknown error")

        if len(error) > 100:
            error = error[:97] + "..."

        self._print(f"{self._timestamp(event)}  {status}: {event.target} - {error}")

    def _handle_collect_complete(self, event: DiscoveryEvent) -> None:
        data = event.data
        self._banner("COLLECTION COMPLETE", "green", "bold")
        self._print(f"Total Assets: {data['total']}")
        self._print(f"Collected: {self._c(str(data['collected']), 'green')}")
        self._print(f"Skipped: {self._c(str(data['skipped']), 'yellow')}")
        self._print(f"Failed: {self._c(str(data['failed']), 'red')}")
        self._print(f"Duration: {data['duration_seconds']:.1f}s")
        self._print()
