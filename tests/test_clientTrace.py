"""End-to-end engine runs and the clienttrace CLI."""

import json

import pytest

import clientTrace
from clientTrace import ClientTraceEngine, main, parse_header_args
from conftest import FakeResponse, FakeSession, ip_api_payload
from geolocationCache import LOCAL_HOST_LOCATION
from traceConfig import ClientTraceConfig


@pytest.fixture
def config(tmp_path):
    return ClientTraceConfig(cache_dir=str(tmp_path / "ip_cache"))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestEngine:
    def test_forwarded_request(self, config):
        session = FakeSession({"203.0.113.9": FakeResponse(ip_api_payload("203.0.113.9"))})
        engine = ClientTraceEngine(config=config, session=session)
        report = engine.analyze_headers(
            {"X-Forwarded-For": "10.0.0.5, 203.0.113.9, 198.51.100.2",
             "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) Firefox/125.0"},
            remote_addr="10.0.0.1",
        )
        assert report.client_ip == "203.0.113.9"
        assert report.resolution.via_frontend
        assert report.detection.possible_source_ip.text == "203.0.113.9"
        assert report.location.startswith("United States")
        assert report.user_agent.browser_name == "Mozilla Firefox"
        # classifier and geolocation each hit ip-api once
        assert len(session.calls) == 2

    def test_loopback_request_makes_no_calls(self, config):
        session = FakeSession()
        engine = ClientTraceEngine(config=config, session=session)
        report = engine.analyze_environ({"REMOTE_ADDR": "127.0.0.1"})
        assert report.client_ip == "127.0.0.1"
        assert report.location == LOCAL_HOST_LOCATION
        assert report.detection.confidence == 0
        assert session.calls == []

    def test_to_dict_is_json_serialisable(self, config):
        engine = ClientTraceEngine(config=config, session=FakeSession())
        report = engine.analyze_headers({"X-Tor": "1"}, remote_addr="203.0.113.9")
        data = json.loads(json.dumps(report.to_dict()))
        assert data["resolution"]["client_ip"] == "203.0.113.9"
        assert data["detection"]["is_tor"] is True
        assert data["location"]

    def test_close_leaves_injected_session_open(self, config):
        session = FakeSession()
        with ClientTraceEngine(config=config, session=session) as engine:
            engine.analyze_headers({}, remote_addr="127.0.0.1")
        assert not session.closed

    def test_context_manager_closes_owned_session(self, config, owned_sessions):
        with ClientTraceEngine(config=config) as engine:
            report = engine.analyze_headers({}, remote_addr="203.0.113.9")
        assert report.detection.ip_info.country == "United States"
        assert len(owned_sessions) == 1
        assert owned_sessions[0].closed


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    def test_parse_header_args(self):
        headers = parse_header_args(["X-Real-IP: 203.0.113.9", "Via:1.1 squid"])
        assert headers == {"X-Real-IP": "203.0.113.9", "Via": "1.1 squid"}

    def test_parse_header_args_rejects_missing_colon(self):
        with pytest.raises(ValueError):
            parse_header_args(["X-Real-IP 203.0.113.9"])

    def test_json_output_without_lookup(self, tmp_path, capsys):
        code = main(["-H", "X-Forwarded-For: 10.0.0.5, 203.0.113.9", "--peer", "10.0.0.1",
                     "--no-lookup", "--json", "--cache-dir", str(tmp_path)])
        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["resolution"]["client_ip"] == "203.0.113.9"
        assert data["detection"]["ip_info"] is None
        assert data["location"] == "Location lookup failed"

    def test_text_output(self, tmp_path, capsys):
        code = main(["--peer", "127.0.0.1", "--no-lookup", "--cache-dir", str(tmp_path)])
        out = capsys.readouterr().out
        assert code == 0
        assert "IP: 127.0.0.1" in out
        assert "=== End of record ===" in out

    def test_bad_header_exits_2(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["-H", "no-colon-here"])
        assert exc.value.code == 2

    def test_keyboard_interrupt_exits_130(self, tmp_path, monkeypatch):
        def interrupted(self, signals):
            raise KeyboardInterrupt

        monkeypatch.setattr(clientTrace.ClientTraceEngine, "analyze", interrupted)
        assert main(["--peer", "8.8.8.8", "--no-lookup", "--cache-dir", str(tmp_path)]) == 130

    def test_cli_closes_its_session(self, tmp_path, owned_sessions, capsys):
        assert main(["--peer", "203.0.113.9", "--cache-dir", str(tmp_path)]) == 0
        assert "IP: 203.0.113.9" in capsys.readouterr().out
        assert len(owned_sessions) == 1
        assert owned_sessions[0].closed

    def test_interrupted_cli_still_closes_its_session(self, tmp_path, monkeypatch, owned_sessions):
        def interrupted(self, signals):
            raise KeyboardInterrupt

        monkeypatch.setattr(clientTrace.ClientTraceEngine, "analyze", interrupted)
        assert main(["--peer", "8.8.8.8", "--cache-dir", str(tmp_path)]) == 130
        assert owned_sessions[0].closed
