"""
Application state model for LLM-QA Curation Workbench.

Holds everything one browser session works with: the dataset store, the
review cursor, the active bulk job and the settings it was started from.
"""

from dataclasses import dataclass, field
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from services.dataset_store import DatasetStore
    from services.job_orchestrator import JobHandle, JobOrchestrator
    from services.prompt_resolver import PromptResolver
    from utils.config import Settings

from .record import Record


@dataclass
class ApplicationState:
    """
    Per-session application state container.

    Attributes:
        store: Shared DatasetStore of the session
        orchestrator: JobOrchestrator bound to the store
        settings: Provider and job defaults
        current_index: Position of the record shown in the Review tab
        active_job: Handle of the running (or last) bulk job
        export_format: Selected export layout
        source_name: Base name of the imported file
        filter_mode: Review list filter (all/duplicates/discarded/unrated)
        prompts: System prompts shared by rewrites and scoring
    """

    store: Optional["DatasetStore"] = None
    orchestrator: Optional["JobOrchestrator"] = None
    settings: Optional["Settings"] = None
    current_index: int = 0
    active_job: Optional["JobHandle"] = None
    export_format: str = "columns"
    source_name: str = ""
    filter_mode: str = "all"
    prompts: Optional["PromptResolver"] = None

    def records(self) -> List[Record]:
        """Snapshot of all records (empty when nothing is loaded)."""
        return self.store.snapshot() if self.store is not None else []

    def visible_records(self) -> List[Record]:
        """Records passing the current filter, in import order."""
        records = self.records()
        if self.filter_mode == "duplicates":
            return [r for r in records if r.is_duplicate]
        if self.filter_mode == "discarded":
            return [r for r in records if r.is_discarded]
        if self.filter_mode == "unrated":
            return [r for r in records if not r.score]
        return records

    def get_current_record(self) -> Optional[Record]:
        records = self.visible_records()
        if 0 <= self.current_index < len(records):
            return records[self.current_index]
        return None

    def get_total_loaded(self) -> int:
        return len(self.store) if self.store is not None else 0

    def get_discarded_count(self) -> int:
        return sum(1 for r in self.records() if r.is_discarded)

    def get_duplicate_count(self) -> int:
        return sum(1 for r in self.records() if r.is_duplicate)

    def is_job_running(self) -> bool:
        return self.active_job is not None and not self.active_job.is_done()
