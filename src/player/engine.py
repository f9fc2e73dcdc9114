# src/player/engine.py
from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Optional

from core.config import PlayerConfig, clamp_volume
from core.lavalink_client import LavalinkClient
from core.models import Playlist, Track
from core.state import Notify, PlayerEvents, PlayerSnapshot, PlayerState, PlayerStatus, RepeatMode

from .progress_clock import ProgressClock

logger = logging.getLogger(__name__)

# Returned by search() whenever Lavalink has nothing, so the UI always has rows to show.
FALLBACK_TRACKS: tuple[Track, ...] = (
    Track("Sample Song 1", "Artist A", "https://example.com/1", 180000),
    Track("Sample Song 2", "Artist B", "https://example.com/2", 210000),
    Track("Sample Song 3", "Artist C", "https://example.com/3", 195000),
)


def _clamp_fraction(f: float) -> float:
    return max(0.0, min(1.0, float(f)))


class PlaybackEngine:
    """
    Owns the queue and play state; Lavalink does the actual audio.

    Every public command runs under one lock, as does each progress clock
    tick. Signals on `self.events` are queued while the lock is held and
    emitted after it is released, in command order.

    State machine:
        IDLE    (no current track)
        PLAYING (current track, playing)
        PAUSED  (current track, not playing)

    On track end: repeat ONE replays the track, anything else dequeues the
    next one or goes IDLE when the queue is empty (repeat ALL included; the
    engine keeps no play history to refill from).
    """

    def __init__(
        self,
        config: PlayerConfig | None = None,
        *,
        client: LavalinkClient | None = None,
        events: PlayerEvents | None = None,
        time_fn: Callable[[], float] = time.monotonic,
        clock_factory: Callable[..., ProgressClock] = ProgressClock,
        rng: random.Random | None = None,
    ):
        self.config = config or PlayerConfig()
        self.client = client if client is not None else LavalinkClient.from_config(self.config)
        self.events = events if events is not None else PlayerEvents()

        self._time = time_fn
        self._clock_factory = clock_factory
        self._rng = rng or random.Random()

        self._lock = threading.RLock()
        self._init_lock = threading.Lock()
        self._dispatch_lock = threading.Lock()

        self._state = PlayerState(volume=clamp_volume(self.config.default_volume))
        self._queue: list[Track] = []
        self._playlists: list[Playlist] = []
        self._favorites: list[Track] = []

        self._clock: Optional[ProgressClock] = None
        self._retired_clocks: list[ProgressClock] = []
        self._outbox: deque = deque()
        self._dispatcher: Optional[int] = None

        self._initialized = False
        self._online = False

    # ----------------------------
    # Command plumbing
    # ----------------------------

    @contextmanager
    def _command(self, wait: bool = True):
        """
        Run a block as one command: under the lock, then (lock released)
        join cancelled clock threads and deliver queued signals.

        wait=False is for the clock thread: it never blocks on another
        dispatcher, whoever is delivering picks its events up.
        """
        with self._lock:
            before = self._snapshot_locked()
            yield
            self._record_changes_locked(before)
            retired, self._retired_clocks = self._retired_clocks, []

        for clock in retired:
            clock.join()
        self._flush_events(wait=wait)

    def _post(self, signal, *args) -> None:
        self._outbox.append((signal, args))

    def _record_changes_locked(self, before: PlayerSnapshot) -> None:
        after = self._snapshot_locked()
        if after == before and after.current_track is before.current_track:
            return

        ev = self.events
        if after.current_track is not before.current_track:
            self._post(ev.track_changed, after.current_track)
        if after.playing != before.playing:
            self._post(ev.playing_changed, after.playing)
        if after.position != before.position:
            self._post(ev.position_changed, after.position)
        if after.volume != before.volume:
            self._post(ev.volume_changed, after.volume)
        if after.queue != before.queue:
            self._post(ev.queue_changed, after.queue)
        if after.shuffle != before.shuffle:
            self._post(ev.shuffle_changed, after.shuffle)
        if after.repeat_mode != before.repeat_mode:
            self._post(ev.repeat_mode_changed, after.repeat_mode)
        self._post(ev.state_changed, after)

    def _flush_events(self, wait: bool = True) -> None:
        """
        Deliver the outbox in FIFO order, one dispatcher at a time.

        A caller waits for the current dispatcher, so its own events have been
        delivered when the command returns. A listener that calls back into
        the engine is already the dispatcher: its events go to the outbox and
        the running loop delivers them next.
        """
        if self._dispatcher == threading.get_ident():
            return
        while True:
            if not self._dispatch_lock.acquire(blocking=wait):
                return
            self._dispatcher = threading.get_ident()
            try:
                while True:
                    with self._lock:
                        if not self._outbox:
                            break
                        signal, args = self._outbox.popleft()
                    signal.emit(*args)
            finally:
                self._dispatcher = None
                self._dispatch_lock.release()

            with self._lock:
                if not self._outbox:
                    return

    def subscribe(self, callback: Callable[[PlayerSnapshot], None]) -> None:
        """
        Call `callback(snapshot)` after every command that changed state.

        Delivery is direct: clock-driven updates (position, track end) arrive
        on the progress clock thread. A Qt UI should hop to its own thread
        itself (e.g. re-emit from a QObject living there).
        """
        self.events.attach("state_changed", callback)

    def unsubscribe(self, callback: Callable[[PlayerSnapshot], None]) -> bool:
        return self.events.detach("state_changed", callback)

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def initialize(self) -> bool:
        """
        Check the Lavalink connection once and mark the engine ready either way.
        Returns whether the server answered.
        """
        with self._init_lock:
            if self._initialized:
                return self._online

            logger.info("Connecting to Lavalink server at %s:%s", self.config.lavalink_host, self.config.lavalink_port)
            try:
                online = bool(self.client.test_connection())
            except Exception:
                logger.exception("Failed to initialize Lavalink connection")
                online = False

            with self._lock:
                self._initialized = True
                self._online = online
                if online:
                    logger.info("Successfully connected to Lavalink server")
                    self._post(self.events.notification, Notify("Connected to Lavalink server", "info"))
                else:
                    logger.warning("Could not connect to Lavalink server, running in offline mode")
                    self._post(
                        self.events.notification,
                        Notify("Could not connect to Lavalink server, running in offline mode", "warn"),
                    )

        # listeners may call initialize() again
        self._flush_events()
        return online

    def shutdown(self) -> None:
        logger.info("Shutting down music player")
        with self._command():
            self._stop_locked()
            self._queue.clear()
            self._initialized = False
            self._online = False

        try:
            self.client.shutdown()
        except Exception:
            logger.exception("Error releasing Lavalink client")

    # ----------------------------
    # Internal transitions (lock held)
    # ----------------------------

    def _start_clock_locked(self) -> None:
        self._stop_clock_locked()
        clock = self._clock_factory(self._on_clock_tick, self.config.progress_interval_s)
        self._clock = clock
        clock.start()

    def _stop_clock_locked(self) -> None:
        clock = self._clock
        if clock is None:
            return
        self._clock = None
        clock.cancel()
        self._retired_clocks.append(clock)

    def _play_locked(self, track: Track) -> None:
        logger.info("Playing: %s", track)
        st = self._state
        st.current_track = track
        st.playing = True
        st.position = 0.0
        st.track_start = self._time()
        self._start_clock_locked()

    def _stop_locked(self) -> None:
        st = self._state
        st.playing = False
        st.current_track = None
        st.position = 0.0
        self._stop_clock_locked()

    def _play_next_locked(self) -> None:
        if self._queue:
            self._play_locked(self._queue.pop(0))
            return
        if self._state.repeat_mode is RepeatMode.ALL and self._state.current_track is not None:
            logger.info("Repeat all enabled but queue is empty")
        self._stop_locked()

    def _enqueue_locked(self, track: Track) -> None:
        self._queue.append(track)
        logger.info("Added to queue: %s", track)
        if self._state.current_track is None:
            self._play_next_locked()

    def _handle_track_end_locked(self) -> None:
        current = self._state.current_track
        if self._state.repeat_mode is RepeatMode.ONE and current is not None:
            self._play_locked(current)
        else:
            self._play_next_locked()

    def _advance_locked(self) -> None:
        st = self._state
        if not st.playing or st.current_track is None:
            return
        duration_ms = st.current_track.duration_ms
        if duration_ms <= 0:
            return

        progress = (self._time() - st.track_start) * 1000.0 / duration_ms
        st.position = _clamp_fraction(progress)

        if progress >= 1.0:
            # cancel first so track end fires exactly once
            self._stop_clock_locked()
            self._handle_track_end_locked()

    def _on_clock_tick(self, clock: ProgressClock) -> None:
        with self._command(wait=False):
            # a tick that lost the race against pause/stop/play belongs to a dead clock
            if clock is not self._clock or clock.cancelled:
                return
            self._advance_locked()

    def tick(self) -> None:
        """
        Run one progress step now, from the caller's thread.

        For hosts that drive progress themselves, e.g. a UI refreshing the
        seek bar from its own QTimer: position is brought up to date
        immediately instead of on the next clock interval, and track end is
        handled here if it is due. Does nothing unless a track is playing.
        """
        with self._command():
            if self._clock is None:
                return
            self._advance_locked()

    # ----------------------------
    # Transport commands
    # ----------------------------

    def add_to_queue(self, track: Track) -> None:
        with self._command():
            self._enqueue_locked(track)

    def remove_from_queue(self, index: int) -> None:
        with self._command():
            if 0 <= index < len(self._queue):
                removed = self._queue.pop(index)
                logger.info("Removed from queue: %s", removed)

    def clear_queue(self) -> None:
        with self._command():
            self._queue.clear()
            logger.info("Queue cleared")

    def play(self, track: Track | None = None) -> None:
        """
        play(track): start `track` from the beginning.
        play():      resume the current track, or start the queue, or do nothing.
        """
        with self._command():
            if track is not None:
                self._play_locked(track)
                return

            st = self._state
            if st.current_track is not None:
                logger.info("Resuming playback")
                st.playing = True
                # keep the position; move the epoch so the clock continues from it
                st.track_start = self._time() - st.position * st.current_track.duration_ms / 1000.0
                self._start_clock_locked()
            elif self._queue:
                self._play_next_locked()

    def pause(self) -> None:
        with self._command():
            logger.info("Pausing playback")
            self._state.playing = False
            self._stop_clock_locked()

    def toggle_play_pause(self) -> None:
        with self._lock:
            playing = self._state.playing
        if playing:
            self.pause()
        else:
            self.play()

    def stop(self) -> None:
        with self._command():
            logger.info("Stopping playback")
            self._stop_locked()

    def skip_next(self) -> None:
        with self._command():
            logger.info("Skipping to next track")
            self._play_next_locked()

    def skip_previous(self) -> None:
        # No history: "previous" restarts whatever is current.
        with self._command():
            logger.info("Skipping to previous track")
            current = self._state.current_track
            if current is not None:
                self._play_locked(current)

    def seek(self, fraction: float) -> None:
        with self._command():
            st = self._state
            if st.current_track is None:
                return
            f = _clamp_fraction(fraction)
            st.position = f
            st.track_start = self._time() - f * st.current_track.duration_ms / 1000.0
            logger.info("Seeked to position: %.3f", f)

    def set_volume(self, volume: int) -> None:
        with self._command():
            self._state.volume = clamp_volume(volume)
            logger.info("Volume set to: %d", self._state.volume)

    def toggle_shuffle(self) -> bool:
        with self._command():
            st = self._state
            st.shuffle = not st.shuffle
            logger.info("Shuffle: %s", "ON" if st.shuffle else "OFF")
            if st.shuffle and self._queue:
                self._rng.shuffle(self._queue)
                logger.info("Queue shuffled")
            return st.shuffle

    def cycle_repeat_mode(self) -> RepeatMode:
        with self._command():
            st = self._state
            st.repeat_mode = st.repeat_mode.next()
            logger.info("Repeat mode: %s", st.repeat_mode.name)
            return st.repeat_mode

    # ----------------------------
    # Search
    # ----------------------------

    def search(self, query: str) -> list[Track]:
        """
        Blocking Lavalink search (bounded by the client timeout). Runs outside
        the engine lock. Never empty: falls back to FALLBACK_TRACKS.
        """
        logger.info("Searching for: %s", query)
        results: list[Track] = []

        if query and query.strip():
            try:
                results = list(self.client.search(query))
            except Exception:
                logger.exception("Error during search")
                results = []

        if results:
            logger.info("Found %d results from Lavalink", len(results))
            return results

        logger.warning("No results from Lavalink for %r, returning demo results as fallback", query)
        return list(FALLBACK_TRACKS)

    # ----------------------------
    # Playlists
    # ----------------------------

    def create_playlist(self, name: str) -> Playlist:
        with self._command():
            playlist = Playlist(name)
            self._playlists.append(playlist)
            logger.info("Created playlist: %s", name)
            self._post(self.events.playlists_changed, tuple(self._playlists))
            return playlist

    def delete_playlist(self, playlist: Playlist) -> None:
        with self._command():
            for i, p in enumerate(self._playlists):
                if p is playlist:
                    del self._playlists[i]
                    logger.info("Deleted playlist: %s", playlist.name)
                    self._post(self.events.playlists_changed, tuple(self._playlists))
                    break

    def get_playlists(self) -> list[Playlist]:
        with self._lock:
            return list(self._playlists)

    def load_playlist(self, playlist: Playlist) -> None:
        with self._command():
            self._queue.clear()
            for track in playlist.tracks:
                self._enqueue_locked(track)
            logger.info("Loaded playlist: %s", playlist.name)

    def save_queue_as_playlist(self, name: str) -> Playlist:
        with self._command():
            tracks = list(self._queue)
            if self._state.current_track is not None:
                tracks.insert(0, self._state.current_track)
            playlist = Playlist(name, tracks)
            self._playlists.append(playlist)
            logger.info("Saved queue as playlist: %s", name)
            self._post(self.events.playlists_changed, tuple(self._playlists))
            return playlist

    # ----------------------------
    # Favorites
    # ----------------------------

    def add_to_favorites(self, track: Track) -> None:
        with self._command():
            if track not in self._favorites:
                self._favorites.append(track)
                logger.info("Added to favorites: %s", track)
                self._post(self.events.favorites_changed, tuple(self._favorites))

    def remove_from_favorites(self, track: Track) -> None:
        with self._command():
            if track in self._favorites:
                self._favorites.remove(track)
                logger.info("Removed from favorites: %s", track)
                self._post(self.events.favorites_changed, tuple(self._favorites))

    def is_favorite(self, track: Track) -> bool:
        with self._lock:
            return track in self._favorites

    def get_favorites(self) -> list[Track]:
        with self._lock:
            return list(self._favorites)

    # ----------------------------
    # Getters
    # ----------------------------

    def _snapshot_locked(self) -> PlayerSnapshot:
        st = self._state
        return PlayerSnapshot(
            current_track=st.current_track,
            playing=st.playing,
            volume=st.volume,
            position=st.position,
            shuffle=st.shuffle,
            repeat_mode=st.repeat_mode,
            queue=tuple(self._queue),
        )

    def snapshot(self) -> PlayerSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def get_queue(self) -> list[Track]:
        with self._lock:
            return list(self._queue)

    @property
    def current_track(self) -> Optional[Track]:
        with self._lock:
            return self._state.current_track

    @property
    def playing(self) -> bool:
        with self._lock:
            return self._state.playing

    @property
    def volume(self) -> int:
        with self._lock:
            return self._state.volume

    @property
    def position(self) -> float:
        with self._lock:
            return self._state.position

    @property
    def shuffle_enabled(self) -> bool:
        with self._lock:
            return self._state.shuffle

    @property
    def repeat_mode(self) -> RepeatMode:
        with self._lock:
            return self._state.repeat_mode

    @property
    def status(self) -> PlayerStatus:
        with self._lock:
            return self._state.status

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def online(self) -> bool:
        return self._online
