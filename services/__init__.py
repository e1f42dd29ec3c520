"""Business logic services for LLM-QA Curation Workbench."""

from .errors import CancellationError, CurationError, NotFoundError, TransportError
from .field_extractor import extract
from .model_client import CancelToken, OpenAICompatibleClient
from .prompt_resolver import PromptResolver
from .rewrite_strategy import RewriteResult, RewriteStrategy
from .scoring import Scorer
from .storage import InMemoryStorage, SqliteStorage
from .dataset_store import DatasetStore
from .duplicate_analyzer import DuplicateAnalyzer
from .job_orchestrator import JobHandle, JobOrchestrator
from .data_manager import DataManager
from .render_engine import RenderEngine
from .export_manager import ExportManager
from .record_removal import RemovalReport, remove_records

__all__ = [
    "CancellationError",
    "CurationError",
    "NotFoundError",
    "TransportError",
    "extract",
    "CancelToken",
    "OpenAICompatibleClient",
    "PromptResolver",
    "RewriteResult",
    "RewriteStrategy",
    "Scorer",
    "InMemoryStorage",
    "SqliteStorage",
    "DatasetStore",
    "DuplicateAnalyzer",
    "JobHandle",
    "JobOrchestrator",
    "DataManager",
    "RenderEngine",
    "ExportManager",
    "RemovalReport",
    "remove_records",
]
