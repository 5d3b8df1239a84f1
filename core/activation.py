from __future__ import annotations

import logging

from core.errors import AudioActivationError

logger = logging.getLogger(__name__)


class AudioActivation:
    """
    Gate that must be passed before the first sound.

    Browsers only allow audio after a user gesture; headless targets are
    always ready. The controller awaits ensure_ready() before any transport start.
    """

    async def ensure_ready(self) -> None:
        raise NotImplementedError


class AlwaysReady(AudioActivation):
    async def ensure_ready(self) -> None:
        return None


class ManualActivation(AudioActivation):
    """Requires an explicit activate() (the "user gesture") before sound may start."""

    def __init__(self) -> None:
        self.active = False

    def activate(self) -> None:
        if not self.active:
            logger.info("Audio activated")
        self.active = True

    async def ensure_ready(self) -> None:
        if not self.active:
            raise AudioActivationError("Audio is not activated yet. Interact with the player to start sound.")
