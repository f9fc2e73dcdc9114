import logging
import os
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from core.config import load_config
from core.errors import PlayerError
from core.state import Notify
from player.engine import PlaybackEngine

logger = logging.getLogger("lavplayer")

def setup_logging() -> None:
    level = os.getenv("LAVPLAYER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

def print_notification(n: Notify) -> None:
    print(f"[{n.notify_type}] {n.message}")

def main(argv: list[str]) -> int:
    setup_logging()
    qt_app = QCoreApplication.instance() or QCoreApplication(argv)

    try:
        config = load_config()
    except PlayerError as e:
        logger.error("%s", e)
        return 2

    engine = PlaybackEngine(config)
    engine.events.attach("notification", print_notification)

    try:
        engine.initialize()

        query = " ".join(argv[1:]).strip()
        if query:
            for i, track in enumerate(engine.search(query), start=1):
                print(f"{i:2d}. {track}  <{track.uri}>")
    finally:
        engine.shutdown()
        qt_app.processEvents()

    return 0

if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
