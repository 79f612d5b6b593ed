from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Type, TypeVar, Union

from .errors import (
    InvalidJobStateError,
    InvalidSubmissionError,
    JobNotFoundError,
    ResultNotReadyError,
)
from .indexing import KnowledgeBase
from .job_queue import JobLocks, SubmissionQueue
from .models import (
    AnalysisMode,
    AssessmentJobRecord,
    AssessmentJobSummary,
    AssessmentResult,
    JobStatus,
    JobStatusView,
    OutputLanguage,
    ScopeDocumentUpload,
)
from .references import ReferenceResultStore, TemplateStore
from .repository import AssessmentRepository
from .steps import StepRegistry
from .storage import LocalDocumentStorage, guess_mime_type

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_REWIND = {
    JobStatus.FAILED_GENERATION: JobStatus.PENDING,
    JobStatus.FAILED_ESTIMATION: JobStatus.GENERATION_COMPLETE,
}


def _coerce_enum(enum_type: Type[E], value: Union[E, str], field_name: str) -> E:
    if isinstance(value, enum_type):
        return value
    text = str(value or "").strip()
    for member in enum_type:
        if text.lower() in (member.value.lower(), member.name.lower()):
            return member
    allowed = ", ".join(member.value for member in enum_type)
    raise InvalidSubmissionError(f"Invalid {field_name} '{value}'. Expected one of: {allowed}")


class AssessmentService:
    """
    Submission, polling, resume and delete for assessment jobs. The service
    never runs a stage itself; it writes Pending (or rewound) records and
    hands ids to the submission queue.
    """

    def __init__(
        self,
        repository: AssessmentRepository,
        registry: StepRegistry,
        queue: SubmissionQueue,
        storage: LocalDocumentStorage,
        templates: TemplateStore,
        reference_results: Optional[ReferenceResultStore] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
        locks: Optional[JobLocks] = None,
    ):
        self.repo = repository
        self.registry = registry
        self.queue = queue
        self.storage = storage
        self.templates = templates
        self.reference_results = reference_results or ReferenceResultStore(repository)
        self.knowledge_base = knowledge_base
        self.locks = locks or JobLocks()

    async def submit_job(
        self,
        template_id: str,
        project_name: str,
        scope_document: ScopeDocumentUpload,
        analysis_mode: Union[AnalysisMode, str] = AnalysisMode.INTERPRETIVE,
        output_language: Union[OutputLanguage, str] = OutputLanguage.ENGLISH,
        reference_result_ids: Optional[Iterable[str]] = None,
        reference_document_sources: Optional[Iterable[str]] = None,
    ) -> AssessmentJobRecord:
        project_name = (project_name or "").strip()
        if not project_name:
            raise InvalidSubmissionError("Project name is required")
        if scope_document is None or not scope_document.content:
            raise InvalidSubmissionError("Scope document is required and must not be empty")
        mode = _coerce_enum(AnalysisMode, analysis_mode, "analysis mode")
        language = _coerce_enum(OutputLanguage, output_language, "output language")

        template = await asyncio.to_thread(self.templates.get_template, str(template_id))
        references = await asyncio.to_thread(
            self.reference_results.get_results, [rid for rid in (reference_result_ids or []) if rid]
        )
        documents = await asyncio.to_thread(self._fetch_reference_documents, reference_document_sources)

        job_id = uuid.uuid4().hex
        stored_path = await asyncio.to_thread(
            self.storage.save_scope_document, job_id, scope_document.filename, scope_document.content
        )
        now = datetime.utcnow()
        job = AssessmentJobRecord(
            id=job_id,
            project_name=project_name,
            template_id=str(template.id or template_id),
            template_name=template.template_name,
            analysis_mode=mode,
            output_language=language,
            status=JobStatus.PENDING,
            step=self.registry.ordinal(JobStatus.PENDING),
            scope_document_path=str(stored_path),
            scope_document_mime_type=guess_mime_type(scope_document.filename, scope_document.mime_type),
            original_template=template.to_dict(),
            reference_assessments=references,
            reference_documents=documents,
            created_at=now,
            updated_at=now,
        )
        try:
            await asyncio.to_thread(self.repo.create_job, job)
        except Exception:
            await asyncio.to_thread(self.storage.delete_job_documents, job_id)
            raise

        self.queue.enqueue(job_id)
        logger.info(
            "Submitted assessment job %s for project '%s' (template %s, %s, %s)",
            job_id,
            project_name,
            job.template_id,
            mode.value,
            language.value,
        )
        return job

    def _fetch_reference_documents(self, sources: Optional[Iterable[str]]) -> List[Dict[str, str]]:
        wanted = [source.strip() for source in (sources or []) if source and source.strip()]
        if not wanted:
            return []
        if self.knowledge_base is None:
            raise InvalidSubmissionError("Reference documents were requested but no knowledge base is configured")
        return [asdict(document) for document in self.knowledge_base.fetch(wanted)]

    async def get_job(self, job_id: str) -> AssessmentJobRecord:
        job = await asyncio.to_thread(self.repo.get_job, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_status(self, job_id: str) -> JobStatusView:
        job = await self.get_job(job_id)
        return self.registry.describe(job)

    async def list_jobs(self) -> List[AssessmentJobSummary]:
        return await asyncio.to_thread(self.repo.list_job_summaries)

    async def resume_job(self, job_id: str, item_feedback: Optional[Dict[str, str]] = None) -> AssessmentJobRecord:
        """
        Clear the failure on a Failed* job, rewind it to its last checkpoint and
        re-enqueue it. Raises InvalidJobStateError for any other status. Waits
        for a worker holding the job, then judges the status it left behind.
        """
        async with self.locks.hold(job_id):
            job = await self.get_job(job_id)
            if not self.registry.is_resumable(job.status):
                raise InvalidJobStateError(
                    f"Assessment job {job_id} is in status {job.status.value}; only failed jobs can be resumed"
                )
            target = _REWIND[job.status]
            previous = job.status
            job.last_error = None
            if item_feedback is not None:
                job.item_feedback = {str(k): str(v) for k, v in item_feedback.items() if v is not None}
            self.registry.apply(job, target)
            saved = await asyncio.to_thread(self.repo.update_job, job)
            if not saved:
                raise JobNotFoundError(job_id)

        self.queue.enqueue(job_id)
        logger.info("Resumed assessment job %s: %s -> %s", job_id, previous.value, target.value)
        return job

    async def delete_job(self, job_id: str) -> bool:
        """Delete the record and its stored scope document. Unknown ids are a no-op."""
        deleted = await asyncio.to_thread(self.repo.delete_job, job_id)
        await asyncio.to_thread(self.storage.delete_job_documents, job_id)
        if deleted:
            logger.info("Deleted assessment job %s", job_id)
        return deleted

    async def get_final_result(self, job_id: str) -> AssessmentResult:
        job = await self.get_job(job_id)
        if job.status != JobStatus.COMPLETE or not job.final_analysis:
            raise ResultNotReadyError(job_id, job.status.value)
        return AssessmentResult.from_dict(job.final_analysis)
