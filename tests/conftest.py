"""Pytest shared fixtures: stubbed token endpoint and an in-memory OneLogin mapping API."""
import json
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from mapping_sync.core.onelogin import OneLoginClient

SUBDOMAIN = "test_subdomain"
BASE_URL = f"https://{SUBDOMAIN}.onelogin.com"
TOKEN_URL = f"{BASE_URL}/auth/oauth2/v2/token"


class StubResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload: Any = None, status_code: int = 200, headers: Optional[dict] = None, text: Optional[str] = None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        if text is not None:
            self.text = text
        else:
            self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


# ─────────────────────────────────────────────────────────────────────────────
# Token endpoint
# ─────────────────────────────────────────────────────────────────────────────
class TokenEndpoint:
    """Stubbed OAuth2 client-credentials endpoint."""

    def __init__(self):
        self.status_code = 200
        self.access_token = "test-token"
        self.expires_in = 36000
        self.created_at: Optional[str] = None
        self.calls = []

    def __call__(self, url, *args, **kwargs):
        if url != TOKEN_URL:
            raise RuntimeError(f"Unexpected HTTP POST in unit test: {url}")
        self.calls.append({"url": url, **kwargs})
        if self.status_code != 200:
            return StubResponse({"status": {"error": True}}, status_code=self.status_code)
        created_at = self.created_at if self.created_at is not None else datetime.now(timezone.utc).isoformat()
        return StubResponse({
            "access_token": self.access_token,
            "created_at": created_at,
            "expires_in": self.expires_in,
            "refresh_token": "test-refresh-token",
            "token_type": "bearer",
            "account_id": 1,
        })


@pytest.fixture(autouse=True)
def token_endpoint(monkeypatch, request):
    """Stub the token endpoint and forbid any other network access.

    Tests marked ``integration`` keep the real ``requests`` functions.
    """
    if request.node.get_closest_marker("integration"):
        return None

    endpoint = TokenEndpoint()

    def _unexpected_request(method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests, "post", endpoint)
    monkeypatch.setattr(requests, "request", _unexpected_request)
    return endpoint


# ─────────────────────────────────────────────────────────────────────────────
# Scripted HTTP responses
# ─────────────────────────────────────────────────────────────────────────────
class HttpStub:
    """Replays responses produced by ``responder`` and records every call."""

    def __init__(self, responder=None):
        self.responder = responder or (lambda call: StubResponse({}))
        self.calls = []

    def __call__(self, method, url, *args, **kwargs):
        parts = urlsplit(url)
        call = {
            "method": method,
            "url": url,
            "path": parts.path,
            "query": {k: v[0] for k, v in parse_qs(parts.query).items()},
            "headers": kwargs.get("headers") or {},
            "data": kwargs.get("data"),
            "timeout": kwargs.get("timeout"),
        }
        self.calls.append(call)
        return self.responder(call)


@pytest.fixture()
def http_stub(monkeypatch, token_endpoint):
    stub = HttpStub()
    monkeypatch.setattr(requests, "request", stub)
    return stub


# ─────────────────────────────────────────────────────────────────────────────
# Fake OneLogin mapping API
# ─────────────────────────────────────────────────────────────────────────────
class FakeOneLogin:
    """In-memory model of the OneLogin mappings endpoints.

    Disabling a mapping renumbers the remaining enabled mappings, enabling one
    appends it at the end, and the sort call only accepts the full set of
    enabled ids, mirroring how OneLogin behaves.
    """

    def __init__(self):
        self.mappings: dict[int, dict] = {}
        self.calls = []
        self.toggle_echo_override: dict[int, int] = {}
        self.sort_echo_override: Optional[list] = None
        self.fail_toggles: list[int] = []
        self._next_id = 1000

    # Seeding helpers
    def add(self, mapping_id: int, enabled: bool, position: Optional[int] = None, name: Optional[str] = None) -> dict:
        mapping = {
            "id": mapping_id,
            "name": name or f"mapping-{mapping_id}",
            "match": "all",
            "enabled": enabled,
            "position": position,
            "conditions": [{"source": "last_login", "operator": ">", "value": "90"}],
            "actions": [{"action": "set_status", "value": ["2"]}],
        }
        self.mappings[mapping_id] = mapping
        return mapping

    def enabled_ids(self) -> list[int]:
        enabled = [m for m in self.mappings.values() if m["enabled"]]
        ordered = sorted(enabled, key=lambda m: (m["position"] is None, m["position"] or 0))
        return [m["id"] for m in ordered]

    def disabled_ids(self) -> list[int]:
        return sorted(m["id"] for m in self.mappings.values() if not m["enabled"])

    @property
    def mutating_calls(self) -> list[dict]:
        return [c for c in self.calls if c["method"] in ("POST", "PUT", "DELETE")]

    def calls_to(self, method: str, path: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    # HTTP handling
    def __call__(self, method, url, *args, **kwargs):
        parts = urlsplit(url)
        headers = kwargs.get("headers") or {}
        data = kwargs.get("data")
        body = json.loads(data) if data else None
        call = {
            "method": method,
            "path": parts.path,
            "query": {k: v[0] for k, v in parse_qs(parts.query).items()},
            "body": body,
        }
        self.calls.append(call)

        if headers.get("Authorization") != "Bearer test-token":
            return StubResponse({"message": "Unauthorized"}, status_code=401)

        path = parts.path
        if self.fail_toggles and method == "PUT" and path != "/api/2/mappings/sort":
            return StubResponse({"message": "transient"}, status_code=self.fail_toggles.pop(0))

        if path == "/api/2/mappings/sort" and method == "PUT":
            return self._sort(body)
        if path == "/api/2/mappings":
            if method == "GET":
                return self._list(call["query"].get("enabled") != "false")
            if method == "POST":
                return self._create(body)
        if path.startswith("/api/2/mappings/"):
            mapping_id = int(path.rsplit("/", 1)[1])
            if mapping_id not in self.mappings:
                return StubResponse({"message": "Not Found"}, status_code=404)
            if method == "GET":
                return StubResponse(dict(self.mappings[mapping_id]))
            if method == "PUT":
                return self._update(mapping_id, body)
            if method == "DELETE":
                self._remove(mapping_id)
                return StubResponse(None, status_code=204, text="")
        raise RuntimeError(f"Unexpected HTTP {method} in fake OneLogin: {url}")

    def _list(self, enabled: bool) -> StubResponse:
        ids = self.enabled_ids() if enabled else self.disabled_ids()
        # OneLogin does not guarantee list order; hand enabled mappings back reversed
        if enabled:
            ids = list(reversed(ids))
        return StubResponse([dict(self.mappings[i]) for i in ids])

    def _create(self, body: dict) -> StubResponse:
        self._next_id += 1
        mapping = dict(body)
        mapping["id"] = self._next_id
        self.mappings[self._next_id] = mapping
        return StubResponse({"id": self._next_id}, status_code=201)

    def _update(self, mapping_id: int, body: dict) -> StubResponse:
        mapping = self.mappings[mapping_id]
        was_enabled = mapping["enabled"]
        mapping.update({k: v for k, v in body.items() if k not in ("id", "position")})
        if was_enabled and not mapping["enabled"]:
            mapping["position"] = None
            self._renumber()
        elif not was_enabled and mapping["enabled"]:
            positioned = [m for m in self.mappings.values() if m["enabled"] and m["position"] is not None]
            mapping["position"] = len(positioned) + 1
        echo = self.toggle_echo_override.get(mapping_id, mapping_id)
        return StubResponse({"id": echo})

    def _sort(self, body: list) -> StubResponse:
        if sorted(body) != sorted(self.enabled_ids()):
            return StubResponse({"message": "sort list must contain every enabled mapping"}, status_code=400)
        for position, mapping_id in enumerate(body, start=1):
            self.mappings[mapping_id]["position"] = position
        echo = self.sort_echo_override if self.sort_echo_override is not None else list(body)
        return StubResponse(echo)

    def _remove(self, mapping_id: int) -> None:
        del self.mappings[mapping_id]
        self._renumber()

    def _renumber(self) -> None:
        enabled = [m for m in self.mappings.values() if m["enabled"] and m["position"] is not None]
        for position, mapping in enumerate(sorted(enabled, key=lambda m: m["position"]), start=1):
            mapping["position"] = position
        for mapping in self.mappings.values():
            if mapping["enabled"] and mapping["position"] is None:
                mapping["position"] = len(enabled) + 1


@pytest.fixture()
def fake_onelogin(monkeypatch, token_endpoint):
    fake = FakeOneLogin()
    monkeypatch.setattr(requests, "request", fake)
    return fake


@pytest.fixture()
def onelogin_client(token_endpoint):
    return OneLoginClient(SUBDOMAIN, "test_client_id", "test_client_secret", timeout=5)
