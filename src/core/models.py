# core/models.py
from __future__ import annotations
from dataclasses import dataclass, field

def format_duration(ms: int) -> str:
    s = max(0, int(ms)) // 1000
    return f"{s // 60}:{s % 60:02d}"

@dataclass(frozen=True)
class Track:
    title: str
    author: str
    uri: str
    duration_ms: int

    def __post_init__(self):
        # frozen: go through object.__setattr__
        if self.duration_ms < 0:
            object.__setattr__(self, "duration_ms", 0)

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration_ms)

    def __str__(self) -> str:
        return f"{self.title} - {self.author} ({self.formatted_duration})"

@dataclass(eq=False)
class Playlist:
    """
    Named, ordered collection of tracks. Duplicates are allowed.

    Equality is identity: two playlists with the same name are different
    registry entries.
    """
    name: str
    _tracks: list[Track] = field(default_factory=list)

    def __post_init__(self):
        self._tracks = list(self._tracks)

    @property
    def tracks(self) -> list[Track]:
        return list(self._tracks)

    def add_track(self, track: Track) -> None:
        self._tracks.append(track)

    def remove_track(self, index: int) -> None:
        if 0 <= index < len(self._tracks):
            del self._tracks[index]

    def clear(self) -> None:
        self._tracks.clear()

    def rename(self, name: str) -> None:
        self.name = name

    def __len__(self) -> int:
        return len(self._tracks)

    def __str__(self) -> str:
        return f"{self.name} ({len(self._tracks)} tracks)"
