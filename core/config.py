# core/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


# Project root: .../midishare
BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """
    MidiShare settings.

    Reads from:
    - environment variables
    - .env in project root

    Goals:
    - sensible defaults for a single-process deployment
    - normalize paths
    - auto-create the library dir
    - keep player timing inside sane bounds
    """

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ---- Environment / server ----
    app_env: str = Field(default="development", validation_alias="APP_ENV")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")
    cors_allow_origins: Optional[str] = Field(default=None, validation_alias="CORS_ALLOW_ORIGINS")

    # ---- Library ----
    library_dir: Path = Field(default=Path("library"), validation_alias="LIBRARY_DIR")

    # ---- Remote API (used by the player client / CLI) ----
    api_base_url: str = Field(default="http://127.0.0.1:8000", validation_alias="API_BASE_URL")
    fetch_timeout_s: float = Field(default=30.0, validation_alias="FETCH_TIMEOUT_S")

    # ---- Player timing ----
    end_of_track_epsilon: float = Field(default=0.1, validation_alias="END_OF_TRACK_EPSILON")
    # ~60fps, the redraw cadence of a browser UI
    frame_interval: float = Field(default=1.0 / 60.0, validation_alias="FRAME_INTERVAL")
    transport_tick: float = Field(default=0.005, validation_alias="TRANSPORT_TICK")

    # ---- Output stage ----
    default_volume: float = Field(default=1.0, validation_alias="DEFAULT_VOLUME")

    # Optional MIDI output port for the sampler (support alias MIDI_PORT)
    midi_output_port: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MIDI_OUTPUT_PORT", "MIDI_PORT"),
    )

    def model_post_init(self, __context) -> None:
        # 1) Normalize paths to absolute, relative to BASE_DIR
        self.library_dir = self._abs_path(self.library_dir)

        # 2) Ensure runtime directories exist
        self.library_dir.mkdir(parents=True, exist_ok=True)

        # 3) Clamps (lightweight, avoid surprising overrides)
        self.api_base_url = (self.api_base_url or "").strip().rstrip("/") or "http://127.0.0.1:8000"

        if self.fetch_timeout_s <= 0:
            self.fetch_timeout_s = 30.0

        # epsilon absorbs timer granularity; anything above 1s would cut audible material
        self.end_of_track_epsilon = float(min(max(self.end_of_track_epsilon, 0.0), 1.0))

        if self.frame_interval <= 0:
            self.frame_interval = 1.0 / 60.0
        elif self.frame_interval > 1.0:
            self.frame_interval = 1.0

        if self.transport_tick <= 0:
            self.transport_tick = 0.005
        elif self.transport_tick > 0.1:
            self.transport_tick = 0.1

        self.default_volume = float(min(max(self.default_volume, 0.0), 1.0))

        if self.midi_output_port is not None and not self.midi_output_port.strip():
            self.midi_output_port = None

    @staticmethod
    def _abs_path(p: Path) -> Path:
        if p.is_absolute():
            return p
        return (BASE_DIR / p).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


if __name__ == "__main__":
    # Quick self-check
    s = get_settings()
    print("Settings loaded")
    print(f"BASE_DIR: {BASE_DIR}")
    print(f"LIBRARY_DIR: {s.library_dir}")
    print(f"API_BASE_URL: {s.api_base_url}")
    print(f"epsilon={s.end_of_track_epsilon}s frame={s.frame_interval:.4f}s tick={s.transport_tick}s")
    print(f"MIDI port: {s.midi_output_port or '(silent)'}")
