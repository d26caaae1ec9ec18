"""
Server-side event capture with once-per-path deduplication.

Mirrors the browser analytics tag: events are deduplicated per
"{name}::{path}", enriched with UTM attribution and revenue fields, and
queued until the capture client becomes ready. Delivery order is FIFO.

Usage:
    capture = EventCapture(client_provider=lambda: posthog_client)
    capture.capture_once("checkout_completed", {"price": "19.99"}, path="/pricing")
    capture.poll()
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, Optional, Set, Tuple

import redis

logger = logging.getLogger(__name__)

MAX_POLL_ATTEMPTS = 100

REVENUE_EVENTS = frozenset({"subscription_completed", "checkout_completed"})

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign")

UTM_TIMESTAMP_KEY = "ph_utm_timestamp"

_MS_PER_DAY = 1000 * 60 * 60 * 24


class SeenKeyStore:
    """Persistence for dedup keys. The default keeps nothing."""

    def load(self) -> Iterable[str]:
        return ()

    def add(self, key: str) -> None:
        pass


class RedisSeenKeyStore(SeenKeyStore):
    """Dedup keys kept in a Redis set so they survive process restarts."""

    def __init__(self, client: redis.Redis, key: str = "event_capture:seen"):
        self.client = client
        self.key = key

    def load(self) -> Iterable[str]:
        try:
            members = self.client.smembers(self.key)
        except redis.RedisError as e:
            logger.warning("Seen key load failed", extra={"error": str(e)})
            return ()
        return [m.decode() if isinstance(m, bytes) else m for m in members]

    def add(self, key: str) -> None:
        try:
            self.client.sadd(self.key, key)
        except redis.RedisError as e:
            logger.warning("Seen key persist failed", extra={"error": str(e)})


def _parse_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


class EventCapture:
    """Deduplicating capture queue in front of a client exposing capture(name, props)."""

    def __init__(
        self,
        client_provider: Callable[[], Any],
        seen_store: Optional[SeenKeyStore] = None,
        query_params: Optional[Dict[str, str]] = None,
        session_values: Optional[Dict[str, str]] = None,
        persisted_values: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            client_provider: Returns the capture client, or None while it is loading
            seen_store: Optional persistence for dedup keys
            query_params: UTM values from the current request (highest priority)
            session_values: UTM values remembered for the session
            persisted_values: Long-lived UTM values, plus ph_utm_timestamp in ms
            clock: Seconds since the epoch
        """
        self._client_provider = client_provider
        self._seen_store = seen_store or SeenKeyStore()
        self._seen: Set[str] = set(self._seen_store.load())
        self._queue: Deque[Tuple[str, Dict[str, Any]]] = deque()
        self._ready = False
        self._poll_count = 0
        self.query_params = query_params or {}
        self.session_values = session_values or {}
        self.persisted_values = persisted_values or {}
        self._clock = clock

    # =========================================================================
    # Readiness
    # =========================================================================

    def _client(self) -> Any:
        client = self._client_provider()
        if client is not None and callable(getattr(client, "capture", None)):
            return client
        return None

    def _flush(self) -> None:
        client = self._client()
        if client is None:
            return
        self._ready = True
        logger.info("Capture client ready", extra={"queued": len(self._queue)})
        while self._queue:
            name, props = self._queue.popleft()
            self._send(client, name, props)

    def poll(self) -> bool:
        """One readiness check; flushes the queue once the client is available."""
        if self._ready:
            return True
        if self._poll_count >= MAX_POLL_ATTEMPTS:
            return False

        self._poll_count += 1
        self._flush()
        if not self._ready and self._poll_count >= MAX_POLL_ATTEMPTS:
            logger.error("Capture client failed to initialize", extra={
                "attempts": self._poll_count,
                "queued": len(self._queue),
            })
        return self._ready

    def is_ready(self) -> bool:
        return self._ready

    def queue_length(self) -> int:
        return len(self._queue)

    # =========================================================================
    # Enrichment
    # =========================================================================

    def extract_utm_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for source in (self.query_params, self.session_values, self.persisted_values):
            for key in UTM_KEYS:
                if not params.get(key) and source.get(key):
                    params[key] = source[key]

        timestamp = self.persisted_values.get(UTM_TIMESTAMP_KEY)
        if timestamp:
            timestamp_ms = _parse_int(timestamp, 0)
            if timestamp_ms:
                now_ms = self._clock() * 1000
                params["attribution_timestamp"] = time.strftime(
                    "%Y-%m-%dT%H:%M:%SZ", time.gmtime(timestamp_ms / 1000)
                )
                params["days_since_attribution"] = int((now_ms - timestamp_ms) // _MS_PER_DAY)
        return params

    def enhance_props(self, name: str, props: Dict[str, Any]) -> Dict[str, Any]:
        utm_params = self.extract_utm_params()

        if name in REVENUE_EVENTS:
            price = _parse_float(props.get("price", 0), 0.0)
            quantity = _parse_int(props.get("quantity", 1), 1)
            props["revenue"] = f"{price * quantity:.2f}"
            props["unit_price"] = f"{price:.2f}"
            props["quantity"] = str(quantity)
            if props.get("product"):
                props["product_name"] = props["product"]
                props["product_id"] = props["product"]
            props.update(utm_params)
        else:
            for key, value in utm_params.items():
                if not props.get(key):
                    props[key] = value
        return props

    # =========================================================================
    # Capture
    # =========================================================================

    def capture_once(
        self,
        name: Any,
        props: Optional[Dict[str, Any]] = None,
        path: str = "/",
        scope_path: bool = True,
    ) -> bool:
        """
        Capture an event unless it already fired on this path.

        Returns:
            True if the event was sent or queued, False if dropped
        """
        if not isinstance(name, str) or not name.strip():
            return False

        key = f"{name}::{path}" if scope_path else name
        if scope_path:
            if key in self._seen:
                logger.debug("Event already fired", extra={"event": name, "path": path})
                return False
            self._seen.add(key)
            self._seen_store.add(key)

        props = self.enhance_props(name, dict(props or {}))

        if self._ready:
            client = self._client()
            if client is not None:
                self._send(client, name, props)
                return True

        self._queue.append((name, props))
        logger.debug("Event queued", extra={"event": name, "queued": len(self._queue)})
        return True

    @staticmethod
    def _send(client: Any, name: str, props: Dict[str, Any]) -> None:
        try:
            client.capture(name, props)
        except Exception as e:
            logger.warning("Event capture failed", extra={
                "event": name,
                "error_type": type(e).__name__,
                "error": str(e),
            })
