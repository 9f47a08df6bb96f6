"""Trigger fan-in, single-flight work queue and the controller loop."""

import threading
import time
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from network_operator import names
from network_operator.config import OperatorSettings
from network_operator.engine import Outcome, ReconcileEngine
from network_operator.exceptions import ClusterApiError
from network_operator.logging_config import get_logger
from network_operator.models.objects import KubeObject

logger = get_logger(__name__)

BACKOFF_BASE = 0.005
BACKOFF_MAX = 1000.0


class TriggerSource(str, Enum):
    OPERATOR_CONFIG = "operator-config"
    CLUSTER_CONFIG = "cluster-config"
    NODE = "node"
    CONFIG_MAP = "config-map"


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class TriggerEvent(BaseModel):
    """A change notification from one of the watched sources."""

    source: TriggerSource
    type: EventType
    name: str
    namespace: str = ""
    old: KubeObject | None = None
    new: KubeObject | None = None


# (api_version, kind, namespace) watched for each source.
WATCHED_SOURCES: dict[TriggerSource, tuple[str, str, str]] = {
    TriggerSource.OPERATOR_CONFIG: (names.OPERATOR_API_VERSION, names.OPERATOR_KIND, ""),
    TriggerSource.CLUSTER_CONFIG: (
        names.CLUSTER_CONFIG_API_VERSION,
        names.CLUSTER_CONFIG_KIND,
        "",
    ),
    TriggerSource.NODE: ("v1", "Node", ""),
    TriggerSource.CONFIG_MAP: ("v1", "ConfigMap", names.APPLIED_NAMESPACE),
}

# Config maps the operator writes itself; watching them would loop.
_SELF_MANAGED_CONFIG_MAPS = (
    names.OPERATOR_LOCK,
    names.APPLIED_PREFIX + names.OPERATOR_CONFIG,
)

_MIRRORED_CLUSTER_FIELDS = ("clusterNetwork", "serviceNetwork", "networkType", "networkDiagnostics")


def _spec(obj: KubeObject | None) -> dict:
    return (obj.attributes.get("spec") or {}) if obj is not None else {}


def event_to_key(event: TriggerEvent) -> str | None:
    """Map a trigger to the reconciliation key, None when it needs no cycle."""
    modified = event.type == EventType.MODIFIED and event.old is not None and event.new is not None

    if event.source == TriggerSource.OPERATOR_CONFIG:
        if modified and _spec(event.old) == _spec(event.new):
            return None
        return event.name

    if event.source == TriggerSource.CLUSTER_CONFIG:
        if modified:
            old, new = _spec(event.old), _spec(event.new)
            if all(old.get(f) == new.get(f) for f in _MIRRORED_CLUSTER_FIELDS):
                return None
        return names.OPERATOR_CONFIG

    if event.source == TriggerSource.NODE:
        if modified and event.old.metadata.labels == event.new.metadata.labels:
            return None
        return names.OPERATOR_CONFIG

    if event.source == TriggerSource.CONFIG_MAP:
        if event.namespace != names.APPLIED_NAMESPACE or event.name in _SELF_MANAGED_CONFIG_MAPS:
            return None
        return names.OPERATOR_CONFIG

    return None


class SingleFlightQueue:
    """Work queue handing out each key to at most one worker at a time.

    A key added while it is being processed is remembered and handed out
    again once done() is called, so overlapping triggers coalesce.
    """

    def __init__(
        self,
        backoff_base: float = BACKOFF_BASE,
        backoff_max: float = BACKOFF_MAX,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cond = threading.Condition()
        self._queue: list[str] = []
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        # One pending delayed add per key: (ready time, timer).
        self._waiting: dict[str, tuple[float, threading.Timer]] = {}
        self._shutting_down = False
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._clock = clock

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is available. Returns None on shutdown or timeout."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._queue or self._shutting_down, timeout):
                return None
            if not self._queue:
                return None
            key = self._queue.pop(0)
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        """Add key once delay seconds have passed.

        A key waits at most once; an earlier pending ready time wins over a later one.
        """
        if delay <= 0:
            self.add(key)
            return
        ready_at = self._clock() + delay
        with self._cond:
            if self._shutting_down:
                return
            pending = self._waiting.get(key)
            if pending is not None:
                if pending[0] <= ready_at:
                    return
                pending[1].cancel()
            timer = threading.Timer(delay, self._fire, args=(key,))
            timer.daemon = True
            self._waiting[key] = (ready_at, timer)
        timer.start()

    def _fire(self, key: str) -> None:
        with self._cond:
            pending = self._waiting.get(key)
            if pending is None or pending[1] is not threading.current_thread():
                return
            del self._waiting[key]
        self.add(key)

    def waiting(self) -> dict[str, float]:
        """Ready time of every key with a pending delayed add."""
        with self._cond:
            return {key: ready_at for key, (ready_at, _) in self._waiting.items()}

    def backoff(self, key: str) -> float:
        with self._cond:
            failures = self._failures.get(key, 0)
        return min(self.backoff_base * (2**failures), self.backoff_max)

    def add_rate_limited(self, key: str) -> None:
        delay = self.backoff(key)
        with self._cond:
            self._failures[key] = self._failures.get(key, 0) + 1
        self.add_after(key, delay)

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            for _, timer in self._waiting.values():
                timer.cancel()
            self._waiting.clear()
            self._cond.notify_all()


class Controller:
    """Feeds triggers through the queue into the reconciliation engine."""

    def __init__(
        self,
        engine: ReconcileEngine,
        settings: OperatorSettings | None = None,
        queue: SingleFlightQueue | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.settings = settings or engine.settings
        self.queue = queue if queue is not None else SingleFlightQueue()
        self._clock = clock
        self._stop = threading.Event()

    def enqueue(self, event: TriggerEvent) -> None:
        key = event_to_key(event)
        if key is None:
            logger.debug(f"Ignoring {event.source.value} event for {event.name}")
            return
        self.queue.add(key)

    def process_next(self, timeout: float | None = None) -> bool:
        """Run one cycle for the next queued key. Returns False when nothing was processed."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            deadline = self._clock() + self.settings.cycle_timeout
            result = self.engine.reconcile(key, deadline)
            if result.outcome == Outcome.RESYNC:
                self.queue.forget(key)
                self.queue.add_after(key, result.requeue_after or self.settings.resync_period)
            elif result.outcome == Outcome.RETRY:
                logger.info(f"Retrying {key} after error: {result.error}")
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
        finally:
            self.queue.done(key)
        return True

    def watch(self, client, source: TriggerSource) -> None:
        """Translate one watch stream into triggers until stopped."""
        api_version, kind, namespace = WATCHED_SOURCES[source]
        seen: dict[tuple[str, str], KubeObject] = {}
        while not self._stop.is_set():
            try:
                for event_type, obj in client.watch(api_version, kind, namespace):
                    ref = (obj.namespace, obj.name)
                    old = seen.get(ref)
                    if event_type == EventType.DELETED.value:
                        seen.pop(ref, None)
                    else:
                        seen[ref] = obj
                    self.enqueue(
                        TriggerEvent(
                            source=source,
                            type=EventType(event_type),
                            name=obj.name,
                            namespace=obj.namespace,
                            old=old,
                            new=obj,
                        )
                    )
                    if self._stop.is_set():
                        return
            except (ClusterApiError, ValueError) as e:
                logger.warning(f"Watch on {kind} failed, restarting: {e}")
                self._stop.wait(5)

    def run(self, client=None) -> None:
        """Process triggers until stop() is called.

        With a client that supports watch(), one watcher thread is started
        per trigger source.
        """
        if client is not None:
            for source in TriggerSource:
                threading.Thread(
                    target=self.watch,
                    args=(client, source),
                    name=f"watch-{source.value}",
                    daemon=True,
                ).start()

        self.queue.add(names.OPERATOR_CONFIG)
        logger.info("Controller started")
        while not self._stop.is_set():
            self.process_next(timeout=1.0)
        logger.info("Controller stopped")

    def stop(self) -> None:
        self._stop.set()
        self.queue.shutdown()
