"""Tests for the Firestore REST store and its value codec.

HTTP calls go through a MagicMock session; nothing touches the network.
"""

import asyncio
import time
from unittest.mock import MagicMock

import pytest
import requests

from src.schedule_sync.engine import ScheduleSyncEngine
from src.schedule_sync.errors import PermanentStoreError, TransientStoreError
from src.schedule_sync.identity import StaticIdentityProvider
from src.schedule_sync.stores.firestore import (
    FirestoreRestStore,
    decode_fields,
    decode_value,
    encode_fields,
    encode_value,
)
from tests.helpers import make_document, make_key, wait_for

BASE = "https://firestore.googleapis.com/v1/projects/demo/databases/(default)/documents"


def _response(status_code, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body or {}
    resp.text = ""
    return resp


def _store(session, token="id-token", **kwargs):
    return FirestoreRestStore("demo", lambda: token, session=session, **kwargs)


# ============================================================
# Codec
# ============================================================


class TestValueCodec:
    def test_scalars(self):
        assert encode_value(True) == {"booleanValue": True}
        assert encode_value(3) == {"integerValue": "3"}
        assert encode_value(1.5) == {"doubleValue": 1.5}
        assert encode_value("x") == {"stringValue": "x"}
        assert encode_value(None) == {"nullValue": None}

    def test_schedule_payload_shape(self):
        key = make_key()
        fields = encode_fields(make_document(key).to_payload())

        assert fields["templateVersion"] == {"integerValue": "1"}
        first = fields["activities"]["arrayValue"]["values"][0]["mapValue"]["fields"]
        assert first["id"] == {"stringValue": "morning-wakeup-fajr"}
        assert first["completed"] == {"booleanValue": False}
        assert first["section"] == {"stringValue": "morning"}

    def test_decode_restores_payload(self):
        payload = make_document(make_key(), completed=("morning-bath",)).to_payload()
        assert decode_fields(encode_fields(payload)) == payload

    def test_empty_array_and_map(self):
        assert decode_value({"arrayValue": {}}) == []
        assert decode_value({"mapValue": {}}) == {}

    def test_unsupported_types(self):
        with pytest.raises(TypeError):
            encode_value(object())
        with pytest.raises(ValueError):
            decode_value({"geoPointValue": {}})


# ============================================================
# Blocking primitives
# ============================================================


class TestFirestoreRequests:
    def test_missing_document_is_none(self):
        session = MagicMock()
        session.request.return_value = _response(404)

        assert _store(session).get_payload(make_key()) is None

        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == f"{BASE}/artifacts/test-app/users/user-1/dailySchedules/2025-06-01"
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer id-token"

    def test_existing_document_is_decoded(self):
        key = make_key()
        payload = make_document(key).to_payload()
        session = MagicMock()
        session.request.return_value = _response(200, {"fields": encode_fields(payload)})

        assert _store(session).get_payload(key) == payload

    def test_put_patches_whole_document(self):
        key = make_key()
        document = make_document(key)
        session = MagicMock()
        session.request.return_value = _response(200)

        _store(session).put_payload(key, document.to_payload())

        call = session.request.call_args
        assert call.args[0] == "PATCH"
        assert call.kwargs["json"] == {"fields": encode_fields(document.to_payload())}
        assert "params" not in call.kwargs  # no updateMask: full overwrite

    def test_no_token_means_no_auth_header(self):
        session = MagicMock()
        session.request.return_value = _response(404)

        _store(session, token=None).get_payload(make_key())

        assert "Authorization" not in session.request.call_args.kwargs["headers"]

    @pytest.mark.parametrize(
        "status, error",
        [
            (503, TransientStoreError),
            (429, TransientStoreError),
            (403, PermanentStoreError),
            (400, PermanentStoreError),
        ],
    )
    def test_http_errors_are_classified(self, status, error):
        session = MagicMock()
        session.request.return_value = _response(status)

        with pytest.raises(error):
            _store(session).get_payload(make_key())

    def test_connection_error_is_transient(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("offline")

        with pytest.raises(TransientStoreError):
            _store(session).put_payload(make_key(), {})

    def test_project_id_required(self):
        with pytest.raises(ValueError):
            FirestoreRestStore("", lambda: None, session=MagicMock())


# ============================================================
# Polling subscription
# ============================================================


class TestFirestoreSubscription:
    @pytest.mark.asyncio
    async def test_first_read_and_changes_are_delivered(self):
        key = make_key()
        payload = make_document(key).to_payload()
        responses = iter([_response(404)])
        session = MagicMock()
        session.request.side_effect = lambda *a, **kw: next(
            responses, _response(200, {"fields": encode_fields(payload)})
        )
        snapshots, errors = [], []

        unsubscribe = _store(session, poll_interval=0.01).subscribe(
            key, snapshots.append, errors.append
        )
        await asyncio.sleep(0.2)
        unsubscribe()

        assert errors == []
        assert snapshots[0] is None
        assert len(snapshots) == 2  # unchanged polls are not re-delivered
        assert snapshots[1].to_payload() == payload

    @pytest.mark.asyncio
    async def test_poll_failure_reports_once_and_stops(self):
        session = MagicMock()
        session.request.return_value = _response(500)
        snapshots, errors = [], []

        _store(session, poll_interval=0.01).subscribe(make_key(), snapshots.append, errors.append)
        await asyncio.sleep(0.1)

        assert snapshots == []
        assert len(errors) == 1
        assert isinstance(errors[0], TransientStoreError)
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_async_put_runs_request(self):
        key = make_key()
        session = MagicMock()
        session.request.return_value = _response(200)

        await _store(session).put(key, make_document(key))

        assert session.request.call_args.args[0] == "PATCH"

    @pytest.mark.asyncio
    async def test_malformed_document_reports_permanent_error(self):
        """A stored document that fails validation ends the subscription with on_error."""
        session = MagicMock()
        session.request.return_value = _response(
            200, {"fields": encode_fields({"activities": [{"id": "x", "completed": True}]})}
        )
        snapshots, errors = [], []

        _store(session, poll_interval=0.01).subscribe(make_key(), snapshots.append, errors.append)
        await asyncio.sleep(0.1)

        assert snapshots == []
        assert len(errors) == 1
        assert isinstance(errors[0], PermanentStoreError)
        assert session.request.call_count == 1


# ============================================================
# Write ordering
# ============================================================


class FakeFirestoreServer:
    """Thread-safe stand-in for the REST endpoint of one document.

    The first PATCH is held for ``first_patch_delay`` seconds before it is
    applied, so an unserialized second PATCH would overtake it.
    """

    def __init__(self, payload=None, first_patch_delay=0.2):
        self.payload = payload
        self.first_patch_delay = first_patch_delay
        self.patches = []
        self.session = MagicMock()
        self.session.request.side_effect = self.handle

    def handle(self, method, url, **kwargs):
        if method == "GET":
            if self.payload is None:
                return _response(404)
            return _response(200, {"fields": encode_fields(self.payload)})
        if not self.patches and self.first_patch_delay:
            delay, self.first_patch_delay = self.first_patch_delay, 0
            time.sleep(delay)
        self.payload = decode_fields(kwargs["json"]["fields"])
        self.patches.append(self.payload)
        return _response(200)


class TestFirestoreWriteOrdering:
    @pytest.mark.asyncio
    async def test_concurrent_puts_reach_server_in_call_order(self):
        key = make_key()
        server = FakeFirestoreServer()
        store = _store(server.session)
        first = make_document(key, completed=("morning-bath",))
        second = make_document(key, completed=("morning-bath", "evening-sleep"))

        await asyncio.gather(store.put(key, first), store.put(key, second))

        assert server.patches == [first.to_payload(), second.to_payload()]
        assert server.payload == second.to_payload()

    @pytest.mark.asyncio
    async def test_poll_overlapping_a_write_is_not_delivered(self):
        """A read taken while a put is in flight never reaches subscribers."""
        key = make_key()
        old = make_document(key).to_payload()
        new = make_document(key, completed=("morning-bath",))
        server = FakeFirestoreServer(payload=old)
        store = _store(server.session, poll_interval=0.02)
        snapshots, errors = [], []

        put_task = asyncio.get_running_loop().create_task(store.put(key, new))
        await asyncio.sleep(0)
        unsubscribe = store.subscribe(key, snapshots.append, errors.append)
        await put_task
        await wait_for(lambda: snapshots)
        unsubscribe()

        assert errors == []
        assert [s.to_payload() for s in snapshots] == [new.to_payload()]

    @pytest.mark.asyncio
    async def test_engine_toggles_persist_in_order(self, config):
        """Two quick toggles leave the server with both activities completed."""
        key = make_key()
        server = FakeFirestoreServer(payload=make_document(key).to_payload())
        store = _store(server.session, poll_interval=10)
        engine = ScheduleSyncEngine(store, StaticIdentityProvider("user-1"), config=config)
        await engine.start()
        engine.set_active_date(key.calendar_date)
        await wait_for(lambda: engine.state.activities)

        results = await asyncio.gather(
            engine.toggle_activity("morning-bath"),
            engine.toggle_activity("evening-sleep"),
        )
        engine.close()

        assert results == [True, True]
        assert len(server.patches) == 2
        stored = {a["id"]: a["completed"] for a in server.payload["activities"]}
        assert stored["morning-bath"] is True
        assert stored["evening-sleep"] is True
        assert engine.state.activity("morning-bath").completed is True
        assert engine.state.activity("evening-sleep").completed is True
