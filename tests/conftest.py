"""Shared fixtures for the proxy tests."""

from __future__ import annotations

import json as jsonlib
from typing import Any

import pytest

import main


class FakeUpstreamResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None):
        self.status_code = status_code
        self.text = text if text is not None else jsonlib.dumps(payload if payload is not None else {})

    def json(self) -> Any:
        return jsonlib.loads(self.text)


class FakeUpstream:
    """Records outbound calls and answers with a canned response."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.response = FakeUpstreamResponse()
        self.error: Exception | None = None

    def reply(self, status_code: int = 200, payload: Any = None, text: str | None = None) -> None:
        self.response = FakeUpstreamResponse(status_code, payload, text)

    def __call__(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append(
            {"method": method, "url": url, "headers": headers, "json": json, "timeout": timeout}
        )
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def last(self) -> dict[str, Any]:
        return self.calls[-1]


@pytest.fixture
def upstream(monkeypatch) -> FakeUpstream:
    fake = FakeUpstream()
    monkeypatch.setattr(main.requests, "request", fake)
    return fake


@pytest.fixture
def config() -> main.Config:
    return main.Config(api_key="key-secret", base_id="appBASE")


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("AIRTABLE_API_KEY", "key-secret")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appBASE")
    monkeypatch.delenv("AIRTABLE_API_URL", raising=False)
    monkeypatch.delenv("AIRTABLE_TIMEOUT", raising=False)
    monkeypatch.delenv("PROXY_VERBOSE", raising=False)
    return monkeypatch


@pytest.fixture
def client(env):
    main.app.config["TESTING"] = True
    with main.app.test_client() as c:
        yield c
