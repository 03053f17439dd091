"""Fixtures for ledgermigrate tests."""

from __future__ import annotations

from typing import Any, Optional
from unittest.mock import MagicMock, patch

import pytest
import requests


def _response(status_code: int = 200, body: Any = None) -> MagicMock:
    """A requests.Response stand-in."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


class FakeLedger:
    """Route posts to a pretend source/target ledger server.

    ``data`` maps collection name -> list of entity rows.  With
    ``repeat_last_page`` the source never returns an empty page and
    keeps answering past the end with its last page instead.  Page
    queries for a collection in ``unreachable`` time out.
    """

    def __init__(
        self,
        schema: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, list[dict[str, Any]]]] = None,
        repeat_last_page: bool = False,
    ) -> None:
        self.schema = schema or {"initial_predicates": [], "current_predicates": []}
        self.data = data or {}
        self.repeat_last_page = repeat_last_page
        self.unreachable: dict[str, int] = {}
        self.calls: list[tuple[str, Any, dict[str, str]]] = []
        self.failures: list[Any] = []

    def post(self, url: str, json: Any = None, headers: Any = None, timeout: Any = None):
        self.calls.append((url, json, dict(headers or {})))
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return _response(failure, {"error": "nope"})
        if url.endswith("/multi-query"):
            return _response(200, self.schema)
        if url.endswith("/query"):
            offset = self.unreachable.get(json["from"])
            if offset is not None and json["opts"]["offset"] >= offset:
                raise requests.exceptions.ReadTimeout("read timed out")
            return _response(200, self._page(json))
        if url.endswith("/fluree/create") or url.endswith("/fluree/transact"):
            return _response(200, {"ok": True})
        return _response(404, {"error": "not found"})

    def _page(self, query: dict[str, Any]) -> list[dict[str, Any]]:
        rows = self.data.get(query["from"], [])
        offset = query["opts"]["offset"]
        limit = query["opts"]["limit"]
        page = rows[offset:offset + limit]
        if not page and self.repeat_last_page and rows:
            start = ((len(rows) - 1) // limit) * limit
            page = rows[start:start + limit]
        return page

    def close(self) -> None:
        pass

    def urls(self, suffix: str) -> list[str]:
        return [url for url, _, _ in self.calls if url.endswith(suffix)]


class ScriptedPrompter:
    """Answers prompts from fixed lists and records what was asked."""

    def __init__(self, urls=(), credentials=()):
        self.urls = list(urls)
        self.credentials = list(credentials)
        self.asked = []

    def ask_url(self, current=None):
        self.asked.append("url")
        return self.urls.pop(0) if self.urls else None

    def ask_credential(self):
        self.asked.append("credential")
        return self.credentials.pop(0) if self.credentials else None


@pytest.fixture()
def make_response():
    """Build requests.Response stand-ins: ``make_response(401, body)``."""
    return _response


@pytest.fixture()
def make_ledger():
    """Build fake ledger servers: ``make_ledger(schema=..., data=...)``."""
    return FakeLedger


@pytest.fixture()
def make_prompter():
    """Build scripted prompters: ``make_prompter(urls=[...], credentials=[...])``."""
    return ScriptedPrompter


@pytest.fixture()
def predicates_payload():
    """Schema multi-query payload with two system predicates."""
    return {
        "initial_predicates": [10, 11],
        "current_predicates": [
            {"_id": 10, "name": "_user/username", "type": "string"},
            {"_id": 11, "name": "_auth/id", "type": "string"},
            {"_id": 1, "name": "person/age", "type": "int", "multi": False},
            {"_id": 2, "name": "person/full_name", "type": "string", "doc": "Full name"},
            {"_id": 3, "name": "person/born", "type": "instant", "multi": False},
            {
                "_id": 4,
                "name": "person/friends",
                "type": "ref",
                "multi": True,
                "restrictCollection": "person",
            },
            {"_id": 5, "name": "blog_post/title", "type": "string", "unique": True},
            {
                "_id": 6,
                "name": "blog_post/author",
                "type": "ref",
                "multi": False,
                "restrictCollection": "person",
            },
            {"_id": 7, "name": "blog_post/tags", "type": "tag", "multi": True},
        ],
    }


@pytest.fixture()
def fake_ledger(predicates_payload):
    """A fake server with a few people and posts."""
    return FakeLedger(
        schema=predicates_payload,
        data={
            "person": [
                {"_id": 101, "age": 41, "full_name": "Ada", "born": 1693403567000,
                 "friends": [{"_id": 102}]},
                {"_id": 102, "age": 36, "full_name": "Grace", "born": 0},
            ],
            "blog_post": [
                {"_id": 201, "title": "Hello", "author": {"_id": 101},
                 "tags": [{"_id": 900}], "_meta": "dropped"},
            ],
        },
    )


@pytest.fixture()
def patched_session(fake_ledger):
    """Make every ConnectionState talk to ``fake_ledger``."""
    with patch("ledgermigrate.connection.requests.Session") as session_cls:
        session_cls.return_value = fake_ledger
        yield fake_ledger


@pytest.fixture()
def no_sleep():
    """Records the delays a retry loop asked for instead of sleeping."""
    delays: list[float] = []
    return delays.append, delays


@pytest.fixture()
def transport_error():
    return requests.exceptions.ConnectionError("connection refused")
