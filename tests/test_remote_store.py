import json

import pytest
import requests

from cloud.remote_store import RemoteConflictError, RemoteStoreError, RestRemoteStore

KEY = "sk-test-0123456789abcdef"


class FakeResponse:
    def __init__(self, status_code, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)
        self.content = b"" if body is None and text is None else self.text.encode()

    def json(self):
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kw):
        self.requests.append((method, url, kw))
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("cloud.remote_store.time.sleep", lambda s: None)


def _store(*responses, retries=1):
    session = FakeSession(*responses)
    return RestRemoteStore(base_url="https://db.example.test/", api_key=KEY, retries=retries, session=session), session


def test_insert_posts_to_table_with_auth_headers():
    store, session = _store(FakeResponse(201, [{"id": "p1", "amount": 10}]))

    row = store.insert("payments", {"amount": 10})

    assert row == {"id": "p1", "amount": 10}
    method, url, kw = session.requests[0]
    assert (method, url) == ("POST", "https://db.example.test/rest/v1/payments")
    assert kw["headers"]["apikey"] == KEY
    assert kw["headers"]["Authorization"] == f"Bearer {KEY}"
    assert kw["json"] == {"amount": 10}


def test_409_is_a_conflict_and_not_retried():
    store, session = _store(FakeResponse(409, text='{"message":"duplicate key"}'))
    with pytest.raises(RemoteConflictError) as ei:
        store.insert("folio_charges", {"idempotency_key": "k1"})
    assert ei.value.status == 409
    assert len(session.requests) == 1


def test_5xx_is_retried_then_raised_as_retryable():
    store, session = _store(
        FakeResponse(503, text=f"upstream down, key={KEY}"),
        FakeResponse(503, text=f"upstream down, key={KEY}"),
    )
    with pytest.raises(RemoteStoreError) as ei:
        store.select("rooms")
    assert ei.value.retryable is True
    assert ei.value.status == 503
    assert KEY not in str(ei.value)
    assert len(session.requests) == 2


def test_4xx_is_not_retried():
    store, session = _store(FakeResponse(400, text="bad column"))
    with pytest.raises(RemoteStoreError) as ei:
        store.insert("rooms", {"nope": 1})
    assert ei.value.retryable is False
    assert len(session.requests) == 1


def test_transport_error_recovers_on_retry():
    store, session = _store(requests.ConnectionError("reset"), FakeResponse(200, [{"id": "101"}]))
    assert store.get("rooms", "101") == {"id": "101"}
    assert session.requests[1][2]["params"] == {"select": "*", "id": "eq.101"}


def test_conditional_update_reports_stale_write():
    store, session = _store(
        FakeResponse(200, []),
        FakeResponse(200, [{"id": "101", "status": "maintenance"}]),
    )
    with pytest.raises(RemoteConflictError) as ei:
        store.update("rooms", "101", {"status": "clean"}, expected={"updated_at": "2024-01-01T08:00:00Z"})
    assert ei.value.code == "stale_write"
    params = session.requests[0][2]["params"]
    assert params == {"id": "eq.101", "updated_at": "eq.2024-01-01T08:00:00Z"}


def test_update_of_missing_row_is_not_found():
    store, _ = _store(FakeResponse(200, []))
    with pytest.raises(RemoteStoreError) as ei:
        store.update("rooms", "999", {"status": "clean"})
    assert ei.value.code == "not_found"
    assert not isinstance(ei.value, RemoteConflictError)


def test_from_env_requires_url(monkeypatch):
    monkeypatch.delenv("REMOTE_STORE_URL", raising=False)
    with pytest.raises(ValueError):
        RestRemoteStore.from_env()

    monkeypatch.setenv("REMOTE_STORE_URL", "https://db.example.test/")
    monkeypatch.setenv("REMOTE_STORE_API_KEY", "'quoted'")
    s = RestRemoteStore.from_env()
    assert s.base_url == "https://db.example.test"
    assert s.api_key == "quoted"
