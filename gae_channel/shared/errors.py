"""
Exception taxonomy for channel backends.

Setup errors abort `stream()` before anything is delivered. Decode errors are
fatal while bootstrapping but only logged inside the poll loop.
`ReauthRequiredError` tells the caller to obtain a fresh token.
"""

class ChannelError(Exception):
    """Base class for everything a channel raises on its own account."""


class SessionStateError(ChannelError):
    pass


# Bootstrap
class SetupError(ChannelError):
    pass

class SetupNotFoundError(SetupError):
    pass

class ParamCountMismatchError(SetupError):
    def __init__(self, got: int, want: int):
        super().__init__(f"incorrect params, got {got}, want {want}")
        self.got = got
        self.want = want

class MalformedParamError(SetupError):
    pass

class TokenMismatchError(SetupError):
    pass


# Wire decoding
class DecodeError(ChannelError):
    pass

class FramingError(DecodeError):
    pass

class SIDExtractionError(DecodeError):
    pass


class ReauthRequiredError(ChannelError):
    def __init__(self, status_code: int):
        super().__init__(f"gateway rejected the session with HTTP {status_code}, a new token is required")
        self.status_code = status_code
