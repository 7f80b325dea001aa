"""Backend package for the fingerpick group decision engine."""

from .config import BackendSettings, SessionConfig, load_settings
from .models import Condition, ExclusionZone, InputResult, Mode, Phase, Position
from .registry import ContactRegistry
from .session import Session
from .store import InMemorySessionStore, SessionStore
from .timers import AsyncioScheduler, ManualScheduler

__all__ = [
    "AsyncioScheduler",
    "BackendSettings",
    "Condition",
    "ContactRegistry",
    "ExclusionZone",
    "InMemorySessionStore",
    "InputResult",
    "load_settings",
    "ManualScheduler",
    "Mode",
    "Phase",
    "Position",
    "Session",
    "SessionConfig",
    "SessionStore",
]
