"""
Trade Console Result Board — Latest Analysis per Instrument
=============================================================
Dashboard-side merge of AnalysisResult packets: one row per
instrument id, last value wins. Rows keep first-seen order so a
table bound to rows() does not reshuffle on every tick.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from tradeconsole.events import AnalysisResult


class ResultBoard:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[str, AnalysisResult] = {}

    def apply(self, result: AnalysisResult) -> None:
        with self._lock:
            self._rows[result.instrument_id] = result

    def get(self, instrument_id: str) -> Optional[AnalysisResult]:
        with self._lock:
            return self._rows.get(instrument_id)

    def rows(self) -> List[AnalysisResult]:
        with self._lock:
            return list(self._rows.values())

    def by_group(self) -> Dict[str, List[AnalysisResult]]:
        """Rows keyed by instrument group, first-seen order within each group."""
        grouped: Dict[str, List[AnalysisResult]] = {}
        for row in self.rows():
            grouped.setdefault(row.instrument_group, []).append(row)
        return grouped

    def by_display_bucket(self) -> Dict[str, List[AnalysisResult]]:
        grouped: Dict[str, List[AnalysisResult]] = {}
        for row in self.rows():
            if row.display_bucket:
                grouped.setdefault(row.display_bucket, []).append(row)
        return grouped

    def remove(self, instrument_id: str) -> bool:
        with self._lock:
            return self._rows.pop(instrument_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
