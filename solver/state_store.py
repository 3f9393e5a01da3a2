"""Simple JSON-backed state store for solver runtime state.

Tracks the next block the order indexer has to scan so a restarted process
resumes where it stopped instead of re-scanning a fixed offset.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import time
from typing import Optional


class StateStore:
    def __init__(
        self,
        base_dir: Optional[str] = None,
        filename: str = "solver_state.json",
        logger: Optional[logging.Logger] = None,
    ):
        directory = base_dir or os.getenv("SOLVER_STATE_DIR") or os.getcwd()
        self.path = os.path.join(directory, filename)
        self.logger = logger or logging.getLogger(__name__)
        self._data = {
            "next_block": None,
            "last_saved_at": None,
        }
        self._load()

    def _load(self) -> None:
        try:
            if os.path.exists(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    obj = json.load(f)
                if isinstance(obj, dict):
                    self._data.update(obj)
                    self.logger.info(f"State recovered: next_block={obj.get('next_block')}")
        except (OSError, ValueError) as e:
            self.logger.warning(f"Could not load state from {self.path}: {e}")

    def _save(self) -> None:
        try:
            self._data["last_saved_at"] = time.time()

            if os.path.exists(self.path):
                try:
                    shutil.copy2(self.path, self.path + ".backup")
                except OSError:
                    pass  # Backup is optional

            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            self.logger.error(f"Failed to save state: {e}")

    def get_next_block(self) -> Optional[int]:
        nb = self._data.get("next_block")
        try:
            return int(nb) if nb is not None else None
        except (TypeError, ValueError):
            return None

    def set_next_block(self, block: int) -> None:
        self._data["next_block"] = int(block)
        self._save()
