"""
Error taxonomy.

Only AuthFailure and ConfigInvalid are relayed to the subscriber;
everything else is logged, emitted as a handler event, or degraded
to an empty value by the component that hit it.
"""


class GlanceRelayError(Exception):
    """Base class for all relay errors."""


class ConfigInvalid(GlanceRelayError):
    """Handler configuration is missing fields or was rejected by the provider."""


class AuthFailure(GlanceRelayError):
    """A token exchange or refresh produced no usable token."""


class ProviderUnavailable(GlanceRelayError):
    """Provider answered with a transport error, timeout or non-success status."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class NotFound(GlanceRelayError):
    """Nothing is playing, or a track has no lyrics."""


class CacheCorrupt(GlanceRelayError):
    """Persisted cache blob could not be decoded."""


class ConnectionLost(GlanceRelayError):
    """Relay or push channel dropped."""
