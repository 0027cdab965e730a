"""Self-consistency voting over executed SQL candidates."""
import logging
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence

import pandas as pd

from core.data_processor import DataProcessor
from core.errors import ExhaustionError

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """One generated SQL text and what happened when it ran"""
    index: int
    sql: Optional[str] = None
    rows: Optional[pd.DataFrame] = None
    error: Optional[str] = None
    refined: bool = False

    @property
    def succeeded(self) -> bool:
        return bool(self.sql and self.sql.strip()) and self.rows is not None and self.error is None


@dataclass(frozen=True)
class VoteOutcome:
    winner: Candidate
    majority_size: int
    successful_executions: int
    group_count: int

    @property
    def confidence(self) -> float:
        return self.majority_size / self.successful_executions


def vote(
    candidates: Sequence[Candidate],
    processor: Optional[DataProcessor] = None,
    float_precision: Optional[int] = None,
) -> VoteOutcome:
    """
    Group successful candidates by canonical result and pick the largest group.
    Ties go to the group holding the earliest candidate, and the winner is the
    earliest candidate of the chosen group.
    """
    processor = processor or DataProcessor()
    successful = sorted((c for c in candidates if c.succeeded), key=lambda c: c.index)
    if not successful:
        raise ExhaustionError(f"All {len(candidates)} candidate(s) failed")

    # dicts keep insertion order, so groups are ordered by their first member
    groups: Dict[Hashable, List[Candidate]] = {}
    for candidate in successful:
        key = processor.canonical_key(candidate.rows, float_precision)
        groups.setdefault(key, []).append(candidate)

    majority = max(groups.values(), key=len)  # max keeps the first of equal-sized groups
    for number, group in enumerate(groups.values(), start=1):
        logger.debug("Group %d: %d vote(s), candidates %s", number, len(group), [c.index for c in group])

    outcome = VoteOutcome(
        winner=majority[0],
        majority_size=len(majority),
        successful_executions=len(successful),
        group_count=len(groups),
    )
    logger.info(
        "Winner: candidate %d with %d/%d votes (%.1f%% confidence)",
        outcome.winner.index, outcome.majority_size, outcome.successful_executions,
        outcome.confidence * 100,
    )
    return outcome
