"""Local JSON persistence for the client's durable session subset."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Union

from bantay.client.state import PERSISTED_FIELDS

logger = logging.getLogger(__name__)


class ClientPersistence:
    """
    Reads and writes the persisted subset of ClientSessionState.

    A missing or corrupt file loads as an empty dict (fresh session).
    Writes go through a temp file + rename so a crash never leaves a
    truncated document behind.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {k: raw[k] for k in PERSISTED_FIELDS if k in raw}

    def save(self, data: Dict[str, Any]) -> None:
        subset = {k: data.get(k) for k in PERSISTED_FIELDS}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(subset, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
