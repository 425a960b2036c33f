import httpx

from gae_channel.client.base_client import Channel
from gae_channel.client.dev_channel import DevChannel
from gae_channel.client.prod_channel import ProdChannel
from gae_channel.shared.config import Settings, settings as default_settings
from gae_channel.shared.models import ChannelConfig

def new_channel(
    host: str,
    client_id: str,
    token: str,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Channel:
    """
    Returns the channel implementation appropriate for `host`. The token must
    already have been obtained from the application server.

    Any host containing "localhost" gets the development channel; everything
    else talks to the production gateway.
    """
    settings = settings or default_settings
    config = ChannelConfig(host=host, client_id=client_id, token=token, channel_path=settings.CHANNEL_PATH)
    if "localhost" in host:
        return DevChannel(config, settings, http_client)
    return ProdChannel(config, settings, http_client)
