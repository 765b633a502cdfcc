"""Shared fixtures: a fake requests session so no test touches the network."""

import pytest
import requests


class FakeResponse:
    def __init__(self, payload=None, status_code=200, headers=None, raw_text=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self._raw_text = raw_text

    def json(self):
        if self._raw_text is not None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; records every GET."""

    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.default = FakeResponse({"status": "fail", "message": "reserved range"})
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        for ip, response in self.responses.items():
            if url.endswith("/" + ip):
                return response
        return self.default

    def close(self):
        self.closed = True


def ip_api_payload(ip, **overrides):
    payload = {
        "status": "success",
        "country": "United States",
        "regionName": "California",
        "city": "Mountain View",
        "zip": "94043",
        "isp": "Example Broadband",
        "org": "Example Broadband Inc",
        "query": ip,
        "proxy": False,
        "hosting": False,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def failing_session():
    return FakeSession(error=requests.ConnectionError("connection refused"))


@pytest.fixture
def owned_sessions(monkeypatch):
    """Every requests.Session() built during the test, as FakeSessions."""
    created = []

    def factory():
        session = FakeSession({"203.0.113.9": FakeResponse(ip_api_payload("203.0.113.9"))})
        created.append(session)
        return session

    monkeypatch.setattr(requests, "Session", factory)
    return created
