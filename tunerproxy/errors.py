"""Exceptions raised by the gateway core."""


class GatewayError(Exception):
    """Base class; ``status_code`` is what the front door answers with."""

    status_code = 500


class CapacityExceeded(GatewayError):
    """All tuner slots are in use."""

    status_code = 503


class ChannelNotFound(GatewayError):
    status_code = 404


class SourceResolutionError(GatewayError):
    """The device could not hand out a playable URL for a channel."""


class ProcessSpawnError(GatewayError):
    """FFmpeg could not be started."""


class PersistenceError(GatewayError):
    """A schedule file is unreadable or corrupt."""


class RefreshCallbackError(GatewayError):
    """A lineup or guide refresh failed."""


class ConfigurationError(GatewayError):
    """Startup cannot continue (e.g. no usable tuner count)."""
