"""
Assessment subsystem exports.
"""

from .documents import DoclingDocumentConverter, DocumentConverter, ScopeDocumentLoader
from .errors import (
    AssessmentError,
    CompletionError,
    ConfigurationError,
    InvalidJobStateError,
    InvalidSubmissionError,
    JobNotFoundError,
    QueueClosedError,
    ResultNotReadyError,
    StageError,
    TemplateNotFoundError,
    UnknownStatusError,
)
from .estimation import EstimationPolicy
from .indexing import InMemoryKnowledgeBase, KnowledgeBase, WhooshKnowledgeBase
from .job_queue import JobLocks, SubmissionQueue
from .llm import AnthropicCompletionClient, CompletionClient, GeminiCompletionClient, get_completion_client
from .models import (
    AnalysisMode,
    AssessmentJobRecord,
    AssessmentJobSummary,
    AssessmentResult,
    GeneratedItem,
    JobStatus,
    JobStatusView,
    OutputLanguage,
    ProjectTemplate,
    ReferenceDocument,
    ScopeDocumentUpload,
    StepDefinition,
    TemplateItem,
    TemplateSection,
)
from .references import InMemoryTemplateStore, JsonDirectoryTemplateStore, ReferenceResultStore, TemplateStore
from .repository import AssessmentRepository, InMemoryAssessmentRepository, SqlAlchemyAssessmentRepository
from .service import AssessmentService
from .stages import EstimationStage, GenerationStage, StageOutcome
from .steps import DEFAULT_STEP_DEFINITIONS, StepRegistry
from .storage import LocalDocumentStorage, StoragePaths
from .worker import AssessmentWorker, WorkerPool

__all__ = [
    "AnalysisMode",
    "AnthropicCompletionClient",
    "AssessmentError",
    "AssessmentJobRecord",
    "AssessmentJobSummary",
    "AssessmentRepository",
    "AssessmentResult",
    "AssessmentService",
    "AssessmentWorker",
    "CompletionClient",
    "CompletionError",
    "ConfigurationError",
    "DEFAULT_STEP_DEFINITIONS",
    "DoclingDocumentConverter",
    "DocumentConverter",
    "EstimationPolicy",
    "EstimationStage",
    "GeminiCompletionClient",
    "GeneratedItem",
    "GenerationStage",
    "InMemoryAssessmentRepository",
    "InMemoryKnowledgeBase",
    "InMemoryTemplateStore",
    "InvalidJobStateError",
    "InvalidSubmissionError",
    "JobLocks",
    "JobNotFoundError",
    "JobStatus",
    "JobStatusView",
    "JsonDirectoryTemplateStore",
    "KnowledgeBase",
    "LocalDocumentStorage",
    "OutputLanguage",
    "ProjectTemplate",
    "QueueClosedError",
    "ReferenceDocument",
    "ReferenceResultStore",
    "ResultNotReadyError",
    "ScopeDocumentLoader",
    "ScopeDocumentUpload",
    "SqlAlchemyAssessmentRepository",
    "StageError",
    "StageOutcome",
    "StepDefinition",
    "StepRegistry",
    "StoragePaths",
    "SubmissionQueue",
    "TemplateItem",
    "TemplateNotFoundError",
    "TemplateSection",
    "TemplateStore",
    "UnknownStatusError",
    "WhooshKnowledgeBase",
    "WorkerPool",
    "get_completion_client",
]
