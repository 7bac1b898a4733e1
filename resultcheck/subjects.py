"""
subjects.py - Session State and Data Model
==========================================
Everything the tool knows during one session lives in a Session object:

- subjects       : One Subject per unique person, keyed by dedup key.
                   A plain dict, so iteration follows insertion order and the
                   export comes out in the same order as the input files.
- input_stats    : Rows read / invalid / duplicate during import
- column_headers : Header row of the last imported worksheet
- stats          : Summary counters, recomputed after every retrieval run
- progress       : Last pending-count notification
- logs           : Append-only list of messages shown to the operator

Dedup Keys:
-----------
    passport|<nationality>|<passport number>
    id|<uin>|<nationality>|<passport number>
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd


logger = logging.getLogger(__name__)


class IdType(str, Enum):
    UIN = "uin"
    PASSPORT = "passport"


class ResultCode(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    PENDING = "PENDING"
    INVALID = "INVALID"
    NO_RESULT = "NO RESULT"


def subject_key(id_type: IdType, uin: str, nationality: str, passport: str) -> str:
    """Build the dedup key for a subject."""
    if id_type == IdType.PASSPORT:
        return f"passport|{nationality}|{passport}"
    return f"id|{uin}|{nationality}|{passport}"


# =============================================================================
# SUBJECT
# =============================================================================

@dataclass
class Subject:
    """
    One person to look up.

    `data` stays None until a lookup succeeds, then holds the API payload:
        {"results": [{"result": ..., "swab_reason": ..., "produced_at": ...}, ...]}

    Only the first element of "results" is ever consulted.
    """

    id_type: IdType
    uin: str
    nationality: str
    passport: str
    other_info: Dict[str, Any] = field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> str:
        return subject_key(self.id_type, self.uin, self.nationality, self.passport)

    @property
    def has_result(self) -> bool:
        return self.data is not None

    @property
    def first_result(self) -> Optional[Dict[str, Any]]:
        if self.data is None:
            return None
        results = self.data.get("results")
        if not isinstance(results, list) or not results:
            return None
        first = results[0]
        return first if isinstance(first, dict) else None

    @property
    def result_code(self) -> Optional[str]:
        """
        The classified result, or None when the subject was never retrieved.

        An empty result list means the API knows of no test: NO RESULT.
        """
        if self.data is None:
            return None
        first = self.first_result
        if first is None:
            return ResultCode.NO_RESULT.value
        return first.get("result")

    @property
    def swab_reason(self) -> Optional[str]:
        first = self.first_result
        return first.get("swab_reason") if first else None

    @property
    def produced_at(self) -> Optional[datetime]:
        first = self.first_result
        if not first or not first.get("produced_at"):
            return None
        raw = str(first["produced_at"])
        stamp = pd.to_datetime(raw, utc=True, errors="coerce")
        if pd.isna(stamp):
            logger.debug(f"Unparseable produced_at: {raw!r}")
            return None
        return stamp.to_pydatetime()

    def store_result(self, payload: Dict[str, Any]):
        """Attach a payload. A subject is only ever given one."""
        if self.data is not None:
            raise RuntimeError(f"Subject {self.key} already has a result")
        self.data = payload


# =============================================================================
# COUNTERS
# =============================================================================

@dataclass
class InputStats:
    total_read: int = 0
    invalid: int = 0
    duplicate: int = 0


@dataclass
class Stats:
    """Summary counters shown after a retrieval run."""

    retrieved: int = 0
    with_test_results: int = 0
    positive_test_results: int = 0
    negative_test_results: int = 0
    pending_test_results: int = 0
    invalid_test_results: int = 0
    no_test_results: int = 0

    def as_dict(self) -> Dict[str, int]:
        """Counters under their camelCase report names (e.g. positiveTestResults)."""
        out = {}
        for f in fields(self):
            head, *rest = f.name.split("_")
            out[head + "".join(part.title() for part in rest)] = getattr(self, f.name)
        return out


_TALLY_FIELDS = {
    ResultCode.POSITIVE.value: "positive_test_results",
    ResultCode.NEGATIVE.value: "negative_test_results",
    ResultCode.PENDING.value: "pending_test_results",
    ResultCode.INVALID.value: "invalid_test_results",
}


def calculate_stats(subjects: Dict[str, Subject]) -> Stats:
    """
    Recompute every counter from scratch over the full subject map.

    This is deliberately not incremental: running retrieval twice over the
    same subjects must not count anything twice.

    Subjects without a payload, or whose payload has no results, both count
    as no_test_results. Result strings outside the four known codes are not
    tallied in any category.
    """
    stats = Stats()

    for subject in subjects.values():
        first = subject.first_result
        if first is None:
            stats.no_test_results += 1
            continue

        name = _TALLY_FIELDS.get(first.get("result"))
        if name:
            setattr(stats, name, getattr(stats, name) + 1)

    stats.with_test_results = (
        stats.positive_test_results
        + stats.negative_test_results
        + stats.pending_test_results
        + stats.invalid_test_results
    )
    stats.retrieved = stats.with_test_results
    return stats


# =============================================================================
# SESSION
# =============================================================================

@dataclass
class Session:
    subjects: Dict[str, Subject] = field(default_factory=dict)
    input_stats: InputStats = field(default_factory=InputStats)
    column_headers: List[str] = field(default_factory=list)
    stats: Stats = field(default_factory=Stats)
    progress: int = 0
    logs: List[str] = field(default_factory=list)
    running: bool = False

    def log(self, message: Any, level: int = logging.INFO):
        """Append to the operator log and mirror it to the logging module."""
        text = str(message)
        self.logs.append(text)
        logger.log(level, text)

    def add_subject(self, subject: Subject) -> bool:
        """
        Insert a subject unless its key is already present.

        Returns:
            True if inserted, False if it was a duplicate
        """
        key = subject.key
        if key in self.subjects:
            return False
        self.subjects[key] = subject
        return True

    def pending_subjects(self) -> List[Subject]:
        return [s for s in self.subjects.values() if not s.has_result]
