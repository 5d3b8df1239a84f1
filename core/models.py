from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict

# Tolerance for position overshoot while a seek is settling
POSITION_SLACK = 1e-6


# =========================
# Enums
# =========================
class PlayerStatus(str, Enum):
    idle = "idle"
    loading = "loading"
    playing = "playing"
    paused = "paused"
    error = "error"


class LeaderboardKey(str, Enum):
    downloads = "downloads"
    views = "views"


# =========================
# Base Model Config
# =========================
class _ContractBaseModel(BaseModel):
    """
    Contract hardening:
    - forbid extra fields (Breaking Change)
    - keep strict-ish behavior via validation
    """
    model_config = ConfigDict(extra="forbid")


# =========================
# Schemas
# =========================
class MidiDescriptor(_ContractBaseModel):
    id: str = Field(..., min_length=1, description="Opaque resource id")
    title: str = Field(..., min_length=1)
    artist: str = Field("Unknown Artist")
    description: Optional[str] = None
    filename: str = Field(..., min_length=1)
    size_bytes: int = Field(0, ge=0)
    views: int = Field(0, ge=0)
    downloads: int = Field(0, ge=0)
    stream_url: str = Field(..., min_length=1)


class PlaybackSnapshot(_ContractBaseModel):
    """
    Read-only view of the player state handed to UI observers.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    current_resource_ref: Optional[str] = None
    current_resource: Optional[MidiDescriptor] = None
    status: PlayerStatus = PlayerStatus.idle
    position: float = Field(0.0, ge=0.0)
    duration: float = Field(0.0, ge=0.0)
    looping: bool = False
    autoplay_next: bool = False
    volume: float = Field(1.0, ge=0.0, le=1.0)
    muted: bool = False
    last_error: Optional[str] = None

    @property
    def progress(self) -> float:
        if self.duration <= 0:
            return 0.0
        return min(1.0, self.position / self.duration)

    @model_validator(mode="after")
    def _validate_invariants(self) -> "PlaybackSnapshot":
        """
        - playing/paused => a resource is current
        - error => last_error is set, no current resource
        - position <= duration
        """
        if self.status in (PlayerStatus.playing, PlayerStatus.paused):
            if self.current_resource_ref is None:
                raise ValueError(f"status='{self.status.value}' requires current_resource_ref")
        elif self.status == PlayerStatus.error:
            if not self.last_error:
                raise ValueError("status='error' requires last_error")
            if self.current_resource_ref is not None:
                raise ValueError("status='error' requires current_resource_ref to be null")

        if self.position > self.duration + POSITION_SLACK:
            raise ValueError("position must not exceed duration")
        return self
