"""Persistence of the last reconciled mapping order."""
from __future__ import annotations
import datetime
import json
import logging
import os
from pathlib import Path
from typing import Optional

from mapping_sync.core.onelogin.mapping_order import DesiredOrderState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path(".runtime/state/mapping-order.json")


class StateStore:
    """JSON file holding the observed ``{enabled, disabled}`` state.

    Writes go to a temporary file that replaces the target so a crash never
    leaves a truncated state file behind.
    """

    def __init__(self, path: Path | str = DEFAULT_STATE_FILE):
        self.path = Path(path)

    def load(self) -> Optional[DesiredOrderState]:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return DesiredOrderState.from_dict(data)

    def save(self, state: DesiredOrderState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.parent.chmod(0o700)

        record = state.to_dict()
        record["updated_at"] = datetime.datetime.now(datetime.timezone.utc).isoformat()

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
            f.write("\n")
        tmp_path.chmod(0o600)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved mapping order state to {self.path}")
