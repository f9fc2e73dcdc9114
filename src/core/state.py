from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from PySide6.QtCore import QObject, Qt, Signal

from core.models import Track

class RepeatMode(Enum):
    OFF = "off"    # play through once
    ONE = "one"    # loop the current track
    ALL = "all"    # advance through the queue

    def next(self) -> "RepeatMode":
        order = (RepeatMode.OFF, RepeatMode.ONE, RepeatMode.ALL)
        return order[(order.index(self) + 1) % len(order)]

class PlayerStatus(Enum):
    IDLE = auto()
    PLAYING = auto()
    PAUSED = auto()

@dataclass(frozen=True)
class Notify:
    message: str
    notify_type: str = "info"   # info/success/warn/error

@dataclass
class PlayerState:
    """Mutable engine state. Only touched while holding the engine lock."""
    current_track: Optional[Track] = None
    playing: bool = False
    volume: int = 50
    position: float = 0.0
    shuffle: bool = False
    repeat_mode: RepeatMode = RepeatMode.OFF
    track_start: float = 0.0    # time_fn() value at which position 0.0 would have been

    @property
    def status(self) -> PlayerStatus:
        if self.current_track is None:
            return PlayerStatus.IDLE
        return PlayerStatus.PLAYING if self.playing else PlayerStatus.PAUSED

@dataclass(frozen=True)
class PlayerSnapshot:
    current_track: Optional[Track]
    playing: bool
    volume: int
    position: float
    shuffle: bool
    repeat_mode: RepeatMode
    queue: tuple[Track, ...] = field(default_factory=tuple)

    @property
    def status(self) -> PlayerStatus:
        if self.current_track is None:
            return PlayerStatus.IDLE
        return PlayerStatus.PLAYING if self.playing else PlayerStatus.PAUSED

class PlayerEvents(QObject):
    track_changed = Signal(object)        # Track | None
    playing_changed = Signal(bool)
    position_changed = Signal(float)      # 0.0 - 1.0
    volume_changed = Signal(int)          # 0 - 100
    queue_changed = Signal(object)        # tuple[Track, ...]
    shuffle_changed = Signal(bool)
    repeat_mode_changed = Signal(object)  # RepeatMode
    favorites_changed = Signal(object)    # tuple[Track, ...]
    playlists_changed = Signal(object)    # tuple[Playlist, ...]
    state_changed = Signal(object)        # PlayerSnapshot, once per command
    notification = Signal(object)         # Notify

    def __init__(self):
        super().__init__()

    def attach(self, name: str, callback) -> None:
        """
        Connect `callback` to the signal `name` with a direct connection.

        The engine emits from whichever thread ran the command, including the
        progress clock thread. Direct delivery keeps one ordered path for all
        of them; Qt's default would queue cross-thread emits behind an event
        loop and reorder them against direct ones.
        """
        getattr(self, name).connect(callback, type=Qt.ConnectionType.DirectConnection)

    def detach(self, name: str, callback) -> bool:
        try:
            getattr(self, name).disconnect(callback)
        except (RuntimeError, TypeError):
            # not connected
            return False
        return True
