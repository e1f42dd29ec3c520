"""Data models for LLM-QA Curation Workbench."""

from .record import ChatMessage, Record
from .rewrite_target import ItemKey, RewriteTarget
from .extraction import ExtractionResult
from .job import AUTOSCORE_MODE, JobConfig, JobEvent, JobProgress, JobStatus, JobSummary
from .application_state import ApplicationState

__all__ = [
    "ChatMessage",
    "Record",
    "ItemKey",
    "RewriteTarget",
    "ExtractionResult",
    "AUTOSCORE_MODE",
    "JobConfig",
    "JobEvent",
    "JobProgress",
    "JobStatus",
    "JobSummary",
    "ApplicationState",
]
