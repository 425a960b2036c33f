import pytest

from gae_channel.client.prod_channel import build_bind_url
from gae_channel.shared.errors import SessionStateError
from gae_channel.shared.models import ChannelSession


@pytest.fixture
def session():
    return ChannelSession(
        talk_host="talkgadget.google.com",
        talk_path="/talkgadget/",
        client_id="client-1",
        token="tok",
        gateway_client_id="gclid",
        gateway_session_id="gsid",
    )


def test_bind_url_carries_every_wire_parameter(session):
    url = build_bind_url(session)

    assert url.scheme == "https"
    assert url.host == "talkgadget.google.com"
    assert url.path == "/talkgadget/dch/bind"
    params = url.params
    assert params["VER"] == "8"
    assert params["RID"] == "0"
    assert params["token"] == "tok"
    assert params["gsessionid"] == "gsid"
    assert params["clid"] == "gclid"
    assert params["prop"] == "data"
    assert params["t"] == "1"
    assert len(params["zx"]) == 12
    assert "SID" not in params


def test_rid_increases_once_per_url(session):
    rids = [build_bind_url(session).params["RID"] for _ in range(4)]
    assert rids == ["0", "1", "2", "3"]
    assert session.rid == 4


def test_extra_parameters_override_defaults(session):
    url = build_bind_url(session, {"RID": "rpc", "TYPE": "xmlhttp", "CI": "0"})
    assert url.params["RID"] == "rpc"
    assert url.params["TYPE"] == "xmlhttp"
    assert url.params["CI"] == "0"
    # The numeric RID was still consumed
    assert build_bind_url(session).params["RID"] == "1"


def test_sid_is_added_once_known(session):
    session.assign_sid("abc123")
    assert build_bind_url(session).params["SID"] == "abc123"


def test_correlation_token_changes_per_url(session):
    assert build_bind_url(session).params["zx"] != build_bind_url(session).params["zx"]


@pytest.mark.asyncio
async def test_channel_bind_url_requires_a_session(prod_channel):
    with pytest.raises(SessionStateError):
        prod_channel.bind_url()
