"""
MODULE OVERVIEW:
The data structures shared by both channel backends, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`ChannelConfig` is the small value both backends are built from (host, client
id, token). `ChannelSession` carries the mutable protocol state of one
`stream()` call against the production gateway: identifiers handed out during
bootstrap, the request counter `rid` and the last seen message id `mid`.
`Backoff` is the delay schedule of the long-poll loop.
"""
from pydantic import BaseModel, Field, model_validator

from gae_channel.shared.errors import SessionStateError
from gae_channel.shared.tokens import rand_letters

class ChannelConfig(BaseModel):
    host: str
    client_id: str
    token: str
    channel_path: str = "/_ah/channel/"

# The same-origin cross page configuration the gateway expects at bootstrap.
# Field order matters only cosmetically; the gateway reads it as a JSON object.
class CrossPageConfig(BaseModel):
    cn: str = Field(default_factory=lambda: rand_letters(10))
    tp: str = "null"
    lpu: str
    ppu: str

    @classmethod
    def for_channel(cls, config: ChannelConfig, talk_host: str, talk_path: str) -> "CrossPageConfig":
        return cls(
            lpu=f"https://{talk_host}{join_path(talk_path, 'xpc_blank')}",
            ppu=f"http://{config.host}{join_path(config.channel_path, 'xpc_blank')}",
        )


class Backoff(BaseModel):
    base_s: float = 0.1
    max_s: float = 60.0
    current_s: float = 0.0

    @model_validator(mode="after")
    def _start_at_base(self) -> "Backoff":
        if self.max_s < self.base_s:
            raise ValueError(f"max backoff {self.max_s} is below base {self.base_s}")
        if not self.base_s <= self.current_s <= self.max_s:
            self.current_s = self.base_s
        return self

    def advance(self) -> float:
        """Returns the delay to wait now and doubles the next one, capped at max."""
        delay = self.current_s
        self.current_s = min(self.current_s * 2, self.max_s)
        return delay

    def reset(self) -> None:
        self.current_s = self.base_s


class ChannelSession(BaseModel):
    # Identity
    talk_host: str
    talk_path: str
    client_id: str
    token: str
    gateway_client_id: str = ""
    gateway_session_id: str = ""
    sid: str = ""

    # Sequencing
    rid: int = 0
    mid: int = 1

    backoff: Backoff = Field(default_factory=Backoff)

    def next_rid(self) -> int:
        rid = self.rid
        self.rid += 1
        return rid

    def observe_mid(self, message_id: int) -> None:
        if message_id > self.mid:
            self.mid = message_id

    def assign_sid(self, sid: str) -> None:
        if self.sid:
            raise SessionStateError(f"SID already assigned ({self.sid!r}), refusing {sid!r}")
        self.sid = sid


def join_path(*parts: str) -> str:
    """Joins URL path segments with exactly one slash between them."""
    cleaned = [p.strip("/") for p in parts if p.strip("/")]
    return "/" + "/".join(cleaned)
