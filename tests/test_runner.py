import httpx
import pytest
from typer.testing import CliRunner

from gae_channel import runner
from gae_channel.shared.errors import ReauthRequiredError, TokenMismatchError

cli = CliRunner()


@pytest.fixture
def stub_stream(monkeypatch):
    """Replaces the channel and its runner; returns the recorded calls and a way to make the run fail."""
    calls = []
    outcome = {"error": None}

    def fake_new_channel(host, client_id, token):
        return ("channel", host, client_id, token)

    async def fake_run_channel(channel, on_message, duration_s=None, retry=False):
        calls.append((channel, duration_s, retry))
        await on_message("hello")
        if outcome["error"] is not None:
            raise outcome["error"]

    monkeypatch.setattr(runner, "new_channel", fake_new_channel)
    monkeypatch.setattr(runner, "run_channel", fake_run_channel)
    monkeypatch.setattr(runner, "configure_logging", lambda level: None)

    def fail_with(error):
        outcome["error"] = error

    return calls, fail_with


def invoke(*extra):
    return cli.invoke(runner.app, ["stream", "myapp.appspot.com", "client-1", "tok", "--plain", *extra])


def test_stream_prints_messages(stub_stream):
    calls, _ = stub_stream
    result = invoke("--duration", "5", "--retry")

    assert result.exit_code == 0
    assert "hello" in result.output
    assert calls == [(("channel", "myapp.appspot.com", "client-1", "tok"), 5.0, True)]


def test_stream_without_duration_runs_until_stopped(stub_stream):
    calls, _ = stub_stream
    invoke()
    assert calls[0][1:] == (None, False)


@pytest.mark.parametrize("error, code", [
    (ReauthRequiredError(401), 2),
    (TokenMismatchError("wcs token mismatch"), 1),
    (httpx.ConnectError("connection refused"), 1),
])
def test_stream_exit_codes(stub_stream, error, code):
    _, fail_with = stub_stream
    fail_with(error)

    result = invoke()

    assert result.exit_code == code


def test_config_prints_settings():
    result = cli.invoke(runner.app, ["config"])
    assert result.exit_code == 0
    assert "TALK_HOST" in result.output
