"""Operator alerts and outcome counters persisted to disk.

Critical alerts mark states where funds or on-chain bookkeeping may be
inconsistent and a human has to look. They are logged at CRITICAL level and
kept in a JSON snapshot next to the solver state.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

WITHDRAWAL_CREATE_FAILED = "withdrawal_create_failed"
WITHDRAWAL_NOT_FOUND = "withdrawal_not_found"
WITHDRAWAL_TERMINATED = "withdrawal_terminated"
WITHDRAWAL_TIMEOUT = "withdrawal_timeout"
SETTLEMENT_RECORD_FAILED = "settlement_record_failed"

MAX_RECENT_ALERTS = 100


class AlertSink:
    def __init__(
        self,
        base_dir: Optional[str] = None,
        filename: str = "alerts.json",
        logger: Optional[logging.Logger] = None,
    ):
        self.path = os.path.join(base_dir, filename) if base_dir else None
        self.logger = logger or logging.getLogger(__name__)
        self._data: Dict[str, Any] = {
            "alerts_total": 0,
            "alert_counts": {},
            "outcome_counts": {},
            "recent_alerts": [],
            "last_alert": None,
        }
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._data.update(data)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Could not load alerts snapshot {self.path}: {e}")

    def _save(self) -> None:
        if not self.path:
            return
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            self.logger.error(f"Failed to save alerts snapshot {self.path}: {e}")

    def critical(self, kind: str, order_id: str, message: str) -> None:
        """Raise an operator-visible alert."""
        self.logger.critical(f"[Critical] {kind}: order {order_id}: {message}")

        alert = {
            "kind": kind,
            "order_id": order_id,
            "message": message,
            "timestamp": time.time(),
        }
        self._data["alerts_total"] += 1
        counts = self._data.setdefault("alert_counts", {})
        counts[kind] = counts.get(kind, 0) + 1
        recent: List[Dict[str, Any]] = self._data.setdefault("recent_alerts", [])
        recent.append(alert)
        del recent[:-MAX_RECENT_ALERTS]
        self._data["last_alert"] = alert
        self._save()

    def record_outcome(self, name: str) -> None:
        counts = self._data.setdefault("outcome_counts", {})
        counts[name] = counts.get(name, 0) + 1
        self._save()

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return int(self._data.get("alerts_total", 0))
        return int(self._data.get("alert_counts", {}).get(kind, 0))

    def alerts_for(self, order_id: str) -> List[Dict[str, Any]]:
        return [a for a in self._data.get("recent_alerts", []) if a.get("order_id") == order_id]

    @property
    def snapshot(self) -> Dict[str, Any]:
        return dict(self._data)
