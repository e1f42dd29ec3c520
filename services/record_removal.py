"""
Bulk removal of records from the dataset.

Records are picked by an explicit selection, by their discard flag, or by a
score threshold, and deleted through DatasetStore (which also removes them
from storage). A dry run reports the candidates without deleting anything.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from models.record import Record
from services.dataset_store import DatasetStore

logger = logging.getLogger(__name__)

SCOPE_SELECTION = "selection"
SCOPE_DISCARDED = "discarded"
SCOPE_BELOW_SCORE = "below_score"
REMOVE_SCOPES = (SCOPE_SELECTION, SCOPE_DISCARDED, SCOPE_BELOW_SCORE)

PREVIEW_CHARS = 50


@dataclass
class RemovalCandidate:
    item_id: str
    score: int
    query_preview: str


@dataclass
class RemovalReport:
    """
    Outcome of a removal request.

    Attributes:
        scope: How candidates were picked
        dry_run: Nothing was deleted
        candidates: Records matching the request, in dataset order
        removed: Ids actually deleted (empty for a dry run)
    """

    scope: str
    dry_run: bool
    candidates: List[RemovalCandidate] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    def describe(self) -> str:
        if not self.candidates:
            return "No records matched the removal criteria"
        if self.dry_run:
            return f"Would remove {len(self.candidates)} records"
        missing = len(self.candidates) - len(self.removed)
        text = f"Removed {len(self.removed)} records"
        if missing:
            text += f" ({missing} already gone)"
        return text


def select_for_removal(
    records: List[Record],
    scope: str,
    item_ids: Optional[Iterable[str]] = None,
    score_threshold: Optional[int] = None,
) -> List[RemovalCandidate]:
    """
    Pick the records a removal request addresses.

    Args:
        records: Dataset snapshot in order
        scope: One of REMOVE_SCOPES
        item_ids: Ids to remove for the selection scope
        score_threshold: Rated records scoring below this (1-5) match the
            below_score scope; unrated records never do

    Raises:
        ValueError: Unknown scope or missing or invalid scope argument
    """
    if scope == SCOPE_SELECTION:
        if item_ids is None:
            raise ValueError("Selection removal needs a list of record ids")
        wanted = set(item_ids)
        matches = [r for r in records if r.id in wanted]
    elif scope == SCOPE_DISCARDED:
        matches = [r for r in records if r.is_discarded]
    elif scope == SCOPE_BELOW_SCORE:
        if score_threshold is None or not 1 <= score_threshold <= 5:
            raise ValueError(f"Score threshold must be between 1 and 5, got {score_threshold}")
        matches = [r for r in records if r.score and r.score < score_threshold]
    else:
        raise ValueError(f"Unknown removal scope: {scope}")

    return [
        RemovalCandidate(r.id, r.score, r.effective_query[:PREVIEW_CHARS])
        for r in matches
    ]


def remove_records(
    store: DatasetStore,
    scope: str,
    item_ids: Optional[Iterable[str]] = None,
    score_threshold: Optional[int] = None,
    dry_run: bool = False,
) -> RemovalReport:
    """
    Delete the records a removal request addresses.

    Records that vanish between selection and deletion are counted as
    already gone rather than as failures.

    Raises:
        ValueError: See select_for_removal()
    """
    candidates = select_for_removal(store.snapshot(), scope, item_ids, score_threshold)
    report = RemovalReport(scope=scope, dry_run=dry_run, candidates=candidates)
    if dry_run or not candidates:
        logger.info("Removal (%s, dry_run=%s): %s", scope, dry_run, report.describe())
        return report

    report.removed = store.delete_many(c.item_id for c in candidates)
    logger.info("Removal (%s): %s", scope, report.describe())
    return report
