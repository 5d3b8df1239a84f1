from __future__ import annotations


# -----------------------------
# Exceptions (Player-level)
# -----------------------------
class PlayerError(Exception):
    """Base exception for the playback engine."""


class NotFoundError(PlayerError):
    """The backing MIDI resource does not exist."""


class NetworkError(PlayerError):
    """Connection/timeout/DNS issues while fetching a resource."""


class ParseError(PlayerError):
    """Byte stream is not a valid MIDI structure."""


class SamplerNotReadyError(PlayerError):
    """Sampler sound data is not loaded yet."""


class AudioActivationError(PlayerError):
    """Engine could not obtain permission to produce sound."""
