from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from core.errors import ConnectivityError, ParseError
from core.models import Track

logger = logging.getLogger(__name__)

MAX_RESULTS = 20
TRACK_LOAD_TYPES = {"search", "track", "playlist"}


def _require(info: dict, key: str, kind: type) -> Any:
    value = info.get(key)
    # bool is an int subclass; a boolean length is still garbage
    if value is None or not isinstance(value, kind) or isinstance(value, bool):
        raise ParseError(f"track info field {key!r} missing or not {kind.__name__}: {value!r}")
    return value


@dataclass(frozen=True)
class TrackInfo:
    title: str
    author: str
    uri: str
    length: int
    identifier: Optional[str] = None
    is_stream: bool = False

    @classmethod
    def from_json(cls, item: Any) -> "TrackInfo":
        if not isinstance(item, dict) or not isinstance(item.get("info"), dict):
            raise ParseError(f"track item has no info object: {item!r}")
        info = item["info"]
        ident = info.get("identifier")
        return cls(
            title=_require(info, "title", str),
            author=_require(info, "author", str),
            uri=_require(info, "uri", str),
            length=_require(info, "length", int),
            identifier=ident if isinstance(ident, str) else None,
            is_stream=bool(info.get("isStream", False)),
        )

    def to_track(self) -> Track:
        return Track(title=self.title, author=self.author, uri=self.uri, duration_ms=self.length)


@dataclass(frozen=True)
class LoadResult:
    """
    Lavalink v4 /loadtracks envelope.

    `items` holds the raw track objects regardless of load type:
      search   -> data is a list of tracks
      track    -> data is a single track
      playlist -> data is {"info": ..., "tracks": [...]}
    """
    load_type: str
    items: list = field(default_factory=list)

    @classmethod
    def from_json(cls, payload: Any) -> "LoadResult":
        if not isinstance(payload, dict) or not isinstance(payload.get("loadType"), str):
            raise ParseError("response has no loadType")

        load_type = payload["loadType"]
        data = payload.get("data")

        if load_type == "search":
            items = data if isinstance(data, list) else []
        elif load_type == "track":
            items = data if isinstance(data, list) else ([data] if data is not None else [])
        elif load_type == "playlist":
            if isinstance(data, list):
                items = data
            elif isinstance(data, dict) and isinstance(data.get("tracks"), list):
                items = data["tracks"]
            else:
                items = []
        else:
            items = []

        return cls(load_type=load_type, items=items)

    @property
    def has_tracks(self) -> bool:
        return self.load_type in TRACK_LOAD_TYPES


class LavalinkClient:
    """
    Blocking client for the Lavalink REST API.

    Every call is a single attempt bounded by `timeout_s` (connect and read).
    Public methods never raise: failures come back as [] / False and are logged.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 2333,
        password: str = "",
        *,
        search_prefix: str = "ytsearch",
        timeout_s: float = 10.0,
        user_agent: str = "lavplayer/0.1",
        session: Optional[requests.Session] = None,
    ):
        self.base_url = f"http://{host}:{int(port)}"
        self.search_prefix = search_prefix
        self.timeout = (timeout_s, timeout_s)
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"Authorization": password, "User-Agent": user_agent})
        self._closed = False

    @classmethod
    def from_config(cls, cfg) -> "LavalinkClient":
        return cls(
            cfg.lavalink_host,
            cfg.lavalink_port,
            cfg.lavalink_password,
            search_prefix=cfg.search_prefix,
            timeout_s=cfg.request_timeout_s,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def build_identifier(self, query: str) -> str:
        q = query.strip()
        # Lavalink resolves direct links itself; only free text needs a search source.
        if q.startswith(("http://", "https://")):
            return q
        return f"{self.search_prefix}:{q}"

    def _get(self, path: str, params: dict | None = None) -> requests.Response:
        if self._closed:
            raise ConnectivityError("client is shut down")
        url = f"{self.base_url}{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ConnectivityError(f"GET {url} failed: {e}") from e
        if not r.ok:
            raise ConnectivityError(f"GET {url} returned {r.status_code}", status_code=r.status_code)
        return r

    def load_tracks(self, identifier: str) -> LoadResult:
        # GET /v4/loadtracks?identifier=ytsearch:...
        r = self._get("/v4/loadtracks", params={"identifier": identifier})
        try:
            payload = r.json()
        except ValueError as e:
            raise ParseError(f"invalid JSON from loadtracks: {e}") from e
        return LoadResult.from_json(payload)

    def search(self, query: str) -> list[Track]:
        tracks: list[Track] = []
        try:
            result = self.load_tracks(self.build_identifier(query))
        except ConnectivityError as e:
            logger.error("Lavalink search failed: %s", e)
            return tracks
        except ParseError as e:
            logger.error("Malformed Lavalink response for %r: %s", query, e)
            return tracks

        if not result.has_tracks:
            logger.warning("No results found for query: %s (loadType=%s)", query, result.load_type)
            return tracks

        for item in result.items:
            try:
                tracks.append(TrackInfo.from_json(item).to_track())
            except ParseError as e:
                logger.warning("Skipping malformed track item: %s", e)
                continue
            if len(tracks) >= MAX_RESULTS:
                break

        logger.info("Found %d tracks for query: %s", len(tracks), query)
        return tracks

    def test_connection(self) -> bool:
        try:
            r = self._get("/version")
        except ConnectivityError as e:
            logger.error("Failed to connect to Lavalink server: %s", e)
            return False
        logger.info("Connected to Lavalink server version: %s", r.text.strip())
        return True

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.session.close()
        except Exception:
            logger.exception("Error closing Lavalink HTTP session")
