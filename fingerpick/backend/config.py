"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class SessionConfig:
    stable_ms: float = 1000.0
    countdown_ms: float = 2500.0
    display_ms: float = 2000.0
    capacity: int | None = 10
    tap_radius: float = 50.0


@dataclass(frozen=True)
class BackendSettings:
    host: str
    port: int
    stable_ms: int
    countdown_ms: int
    display_ms: int
    capacity: int
    tap_radius: int
    log_level: str

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            stable_ms=float(self.stable_ms),
            countdown_ms=float(self.countdown_ms),
            display_ms=float(self.display_ms),
            capacity=self.capacity if self.capacity > 0 else None,
            tap_radius=float(self.tap_radius),
        )


def load_settings() -> BackendSettings:
    return BackendSettings(
        host=os.getenv("FINGERPICK_HOST", "127.0.0.1"),
        port=int(os.getenv("FINGERPICK_PORT", "8000")),
        stable_ms=int(os.getenv("FINGERPICK_STABLE_MS", "1000")),
        countdown_ms=int(os.getenv("FINGERPICK_COUNTDOWN_MS", "2500")),
        display_ms=int(os.getenv("FINGERPICK_DISPLAY_MS", "2000")),
        capacity=int(os.getenv("FINGERPICK_CAPACITY", "10")),
        tap_radius=int(os.getenv("FINGERPICK_TAP_RADIUS", "50")),
        log_level=os.getenv("FINGERPICK_LOG_LEVEL", "INFO").upper(),
    )
