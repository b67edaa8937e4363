"""Local file sink: appends notifications to a JSON-lines file."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from rollforge.models.notifications import RolloutNotification

logger = logging.getLogger(__name__)


class LocalFileSink:
    """Appends one JSON object per notification to ``path``.

    Parameters
    ----------
    path:
        Target file.  Defaults to ``.rollforge/events.jsonl``.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else Path(".rollforge/events.jsonl")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def sink_name(self) -> str:
        return "local_file"

    @property
    def path(self) -> Path:
        return self._path

    def accept(self, notification: RolloutNotification) -> None:
        line = json.dumps(notification.model_dump(mode="json"), sort_keys=True)
        with self._lock, self._path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        logger.debug("LocalFileSink: wrote run %s to %s", notification.run_id, self._path)

    def read_events(self) -> list[RolloutNotification]:
        """Return every notification written so far, oldest first."""
        if not self._path.exists():
            return []
        return [
            RolloutNotification.model_validate_json(line)
            for line in self._path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
