"""Firestore-backed DocumentStore over the REST v1 API.

Documents live at ``artifacts/{app}/users/{uid}/dailySchedules/{date}`` in the
project's default database. Writes are whole-document PATCH requests without
an update mask, so the stored document is replaced, never merged.

The REST API has no push channel, so ``subscribe`` polls: the first read is
delivered as the initial snapshot and later reads are delivered only when the
document changed. Reads that overlap a write are not delivered. Puts to one
document are serialized, so they reach the server in the order they were
issued. Blocking ``requests`` calls run in a worker thread.
"""

import asyncio
import base64
from typing import Any, Callable

import requests

from src.schedule_sync.errors import (
    PermanentStoreError,
    StoreError,
    TransientStoreError,
)
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import ScheduleDocument, ScheduleKey
from src.schedule_sync.stores.base import (
    ErrorCallback,
    SnapshotCallback,
    Unsubscribe,
    parse_snapshot,
)

logger = get_logger(__name__)

FIRESTORE_BASE = "https://firestore.googleapis.com/v1"

# 429 and 5xx are worth another user-triggered attempt; other 4xx are not
_TRANSIENT_STATUS: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


# ---------------------------------------------------------------------------
# Typed value codec
# ---------------------------------------------------------------------------
def encode_value(value: Any) -> dict[str, Any]:
    """Encode a JSON-like Python value as a Firestore ``Value``."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, bytes):
        return {"bytesValue": base64.b64encode(value).decode("ascii")}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode {type(value).__name__} as a Firestore value")


def decode_value(value: dict[str, Any]) -> Any:
    """Decode a Firestore ``Value`` into plain Python."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "bytesValue" in value:
        return base64.b64decode(value["bytesValue"])
    if "arrayValue" in value:
        # An empty array comes back as {"arrayValue": {}}
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def encode_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {name: encode_value(v) for name, v in data.items()}


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {name: decode_value(v) for name, v in fields.items()}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class FirestoreRestStore:
    """DocumentStore talking to Firestore's REST API with polling subscriptions."""

    def __init__(
        self,
        project_id: str,
        token_provider: Callable[[], str | None],
        *,
        poll_interval: float = 2.0,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize FirestoreRestStore.

        Args:
            project_id: Firebase/GCP project id.
            token_provider: Returns the current ID token (None for unauthenticated access).
            poll_interval: Seconds between change polls per subscription.
            timeout: Per-request timeout in seconds.
            session: Optional requests session (injected in tests).
        """
        if not project_id:
            raise ValueError("Firestore project id is required")
        self.project_id = project_id
        self.token_provider = token_provider
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.session = session or requests.Session()
        self._write_locks: dict[str, asyncio.Lock] = {}
        # Per document path: puts not yet finished, and a counter bumped on
        # every put start and finish so a poll can tell a write overlapped it
        self._writes_in_flight: dict[str, int] = {}
        self._write_seq: dict[str, int] = {}
        self.documents_url = (
            f"{FIRESTORE_BASE}/projects/{project_id}/databases/(default)/documents"
        )

    def _url(self, key: ScheduleKey) -> str:
        return f"{self.documents_url}/{key.document_path}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, key: ScheduleKey, **kwargs) -> requests.Response:
        try:
            return self.session.request(
                method,
                self._url(key),
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientStoreError(f"Firestore {method} failed: {e}") from e
        except requests.RequestException as e:
            raise PermanentStoreError(f"Firestore {method} failed: {e}") from e

    @staticmethod
    def _raise_for_status(resp: requests.Response, action: str) -> None:
        if resp.status_code < 400:
            return
        message = f"Firestore {action} failed: {resp.status_code} {resp.text[:200]}"
        if resp.status_code in _TRANSIENT_STATUS:
            raise TransientStoreError(message)
        raise PermanentStoreError(message)

    # -------- Blocking primitives --------
    def get_payload(self, key: ScheduleKey) -> dict[str, Any] | None:
        """Read the document payload at ``key``; None if it does not exist."""
        resp = self._request("GET", key)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, "read")
        try:
            body = resp.json()
        except ValueError as e:
            raise PermanentStoreError(f"Firestore returned invalid JSON: {e}") from e
        return decode_fields(body.get("fields", {}))

    def put_payload(self, key: ScheduleKey, payload: dict[str, Any]) -> None:
        resp = self._request("PATCH", key, json={"fields": encode_fields(payload)})
        self._raise_for_status(resp, "write")

    # -------- DocumentStore --------
    async def get(self, key: ScheduleKey) -> ScheduleDocument | None:
        payload = await asyncio.to_thread(self.get_payload, key)
        return parse_snapshot(key, payload)

    def _write_lock(self, key: ScheduleKey) -> asyncio.Lock:
        lock = self._write_locks.get(key.document_path)
        if lock is None:
            lock = self._write_locks[key.document_path] = asyncio.Lock()
        return lock

    def _writes_settled_since(self, key: ScheduleKey, seq: int) -> bool:
        path = key.document_path
        return self._writes_in_flight.get(path, 0) == 0 and self._write_seq.get(path, 0) == seq

    async def put(self, key: ScheduleKey, document: ScheduleDocument) -> None:
        """Write ``document``; concurrent puts to one key reach the server in call order."""
        path = key.document_path
        payload = document.to_payload()
        self._writes_in_flight[path] = self._writes_in_flight.get(path, 0) + 1
        self._write_seq[path] = self._write_seq.get(path, 0) + 1
        try:
            async with self._write_lock(key):
                await asyncio.to_thread(self.put_payload, key, payload)
        finally:
            self._writes_in_flight[path] -= 1
            self._write_seq[path] += 1
        logger.debug("firestore_put", path=path)

    def subscribe(
        self,
        key: ScheduleKey,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(
            self._poll(key, on_snapshot, on_error),
            name=f"firestore-poll:{key.document_path}",
        )
        logger.debug("firestore_subscribed", path=key.document_path)

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()
                logger.debug("firestore_unsubscribed", path=key.document_path)

        return unsubscribe

    async def _poll(
        self,
        key: ScheduleKey,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        first = True
        last: dict[str, Any] | None = None
        while True:
            seq = self._write_seq.get(key.document_path, 0)
            try:
                payload = await asyncio.to_thread(self.get_payload, key)
                document = parse_snapshot(key, payload)
            except StoreError as e:
                logger.warning("firestore_poll_failed", path=key.document_path, error=str(e))
                on_error(e)
                return

            if not self._writes_settled_since(key, seq):
                # A write overlapped this read; the next poll sees the settled document
                logger.debug("firestore_poll_skipped", path=key.document_path, reason="write_in_flight")
            elif first or payload != last:
                first = False
                last = payload
                on_snapshot(document)

            await asyncio.sleep(self.poll_interval)
