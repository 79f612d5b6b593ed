from __future__ import annotations

import json
import threading
from copy import deepcopy
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text, create_engine, delete, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import (
    AnalysisMode,
    AssessmentJobRecord,
    AssessmentJobSummary,
    JobStatus,
    OutputLanguage,
    StepDefinition,
)

Base = declarative_base()


class StepDefinitionModel(Base):
    __tablename__ = "assessment_step_definitions"
    status = Column(String, primary_key=True)
    step = Column(Integer, nullable=False)
    label = Column(String)
    description = Column(Text)
    expected_fields = Column(Text)
    progress_percent = Column(Integer)
    terminal = Column(Boolean, default=False)
    actions = Column(Text)


class AssessmentJobModel(Base):
    __tablename__ = "assessment_jobs"
    id = Column(String, primary_key=True)
    project_name = Column(String)
    template_id = Column(String, index=True)
    template_name = Column(String)
    analysis_mode = Column(Enum(AnalysisMode))
    output_language = Column(Enum(OutputLanguage))
    status = Column(Enum(JobStatus), index=True)
    step = Column(Integer)
    scope_document_path = Column(String)
    scope_document_mime_type = Column(String)
    original_template_json = Column(Text)
    reference_assessments_json = Column(Text)
    reference_documents_json = Column(Text)
    item_feedback_json = Column(Text)
    raw_generation_response = Column(Text)
    generated_items_json = Column(Text)
    raw_estimation_response = Column(Text)
    final_analysis_json = Column(Text)
    last_error = Column(Text)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


class AssessmentRepository:
    """
    Persistence boundary for assessment jobs and the step table. Every write
    of a job is a whole-record write, so a status change and the outputs that
    justify it always land together.
    """

    # Step table
    def upsert_step_definitions(self, definitions: Iterable[StepDefinition]) -> None:
        raise NotImplementedError

    def list_step_definitions(self) -> List[StepDefinition]:
        raise NotImplementedError

    # Jobs
    def create_job(self, job: AssessmentJobRecord) -> None:
        raise NotImplementedError

    def get_job(self, job_id: str) -> Optional[AssessmentJobRecord]:
        raise NotImplementedError

    def update_job(self, job: AssessmentJobRecord) -> bool:
        """Persist `job` if it still exists. Returns False when it was deleted."""
        raise NotImplementedError

    def delete_job(self, job_id: str) -> bool:
        raise NotImplementedError

    def list_jobs(self, statuses: Optional[Iterable[JobStatus]] = None) -> List[AssessmentJobRecord]:
        raise NotImplementedError

    def list_job_summaries(self) -> List[AssessmentJobSummary]:
        jobs = sorted(self.list_jobs(), key=lambda j: j.created_at, reverse=True)
        return [
            AssessmentJobSummary(
                id=job.id,
                project_name=job.project_name,
                template_id=job.template_id,
                template_name=job.template_name,
                status=job.status,
                step=job.step,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
            for job in jobs
        ]


class InMemoryAssessmentRepository(AssessmentRepository):
    """
    Simple in-memory store for local runs and tests. It keeps copies of
    dataclasses to avoid cross-mutation between calls, and a lock because the
    worker calls it from executor threads.
    """

    def __init__(self):
        self.steps: Dict[str, StepDefinition] = {}
        self.jobs: Dict[str, AssessmentJobRecord] = {}
        self._lock = threading.Lock()

    def _clone(self, obj):
        return deepcopy(obj)

    def upsert_step_definitions(self, definitions: Iterable[StepDefinition]) -> None:
        with self._lock:
            for definition in definitions:
                self.steps[definition.status] = self._clone(definition)

    def list_step_definitions(self) -> List[StepDefinition]:
        with self._lock:
            return [self._clone(d) for d in sorted(self.steps.values(), key=lambda d: d.step)]

    def create_job(self, job: AssessmentJobRecord) -> None:
        with self._lock:
            if job.id in self.jobs:
                raise ValueError(f"Assessment job already exists: {job.id}")
            self.jobs[job.id] = self._clone(job)

    def get_job(self, job_id: str) -> Optional[AssessmentJobRecord]:
        with self._lock:
            job = self.jobs.get(job_id)
            return self._clone(job) if job else None

    def update_job(self, job: AssessmentJobRecord) -> bool:
        with self._lock:
            if job.id not in self.jobs:
                return False
            job.updated_at = datetime.utcnow()
            self.jobs[job.id] = self._clone(job)
            return True

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            return self.jobs.pop(job_id, None) is not None

    def list_jobs(self, statuses: Optional[Iterable[JobStatus]] = None) -> List[AssessmentJobRecord]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [self._clone(j) for j in self.jobs.values() if wanted is None or j.status in wanted]


class SqlAlchemyAssessmentRepository(AssessmentRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    Structured snapshots and outputs are stored as JSON text.
    """

    def __init__(self, database_url: str):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, future=True, connect_args=connect_args)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    # region Step table
    def upsert_step_definitions(self, definitions: Iterable[StepDefinition]) -> None:
        with self._session() as session:
            for definition in definitions:
                session.merge(
                    StepDefinitionModel(
                        status=definition.status,
                        step=definition.step,
                        label=definition.label,
                        description=definition.description,
                        expected_fields=json.dumps(definition.expected_fields),
                        progress_percent=definition.progress_percent,
                        terminal=definition.terminal,
                        actions=json.dumps(definition.actions),
                    )
                )
            session.commit()

    def list_step_definitions(self) -> List[StepDefinition]:
        with self._session() as session:
            models = session.execute(select(StepDefinitionModel).order_by(StepDefinitionModel.step)).scalars().all()
            return [
                StepDefinition(
                    status=m.status,
                    step=int(m.step),
                    label=m.label or "",
                    description=m.description or "",
                    expected_fields=json.loads(m.expected_fields or "[]"),
                    progress_percent=int(m.progress_percent or 0),
                    terminal=bool(m.terminal),
                    actions=json.loads(m.actions or "[]"),
                )
                for m in models
            ]

    # endregion

    # region Job operations
    def create_job(self, job: AssessmentJobRecord) -> None:
        with self._session() as session:
            model = AssessmentJobModel(id=job.id)
            self._apply(model, job)
            session.add(model)
            session.commit()

    def get_job(self, job_id: str) -> Optional[AssessmentJobRecord]:
        with self._session() as session:
            model = session.get(AssessmentJobModel, job_id)
            if not model:
                return None
            return self._to_record(model)

    def update_job(self, job: AssessmentJobRecord) -> bool:
        with self._session() as session:
            model = session.get(AssessmentJobModel, job.id)
            if not model:
                return False
            job.updated_at = datetime.utcnow()
            self._apply(model, job)
            session.commit()
            return True

    def delete_job(self, job_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(AssessmentJobModel).where(AssessmentJobModel.id == job_id))
            session.commit()
            return bool(result.rowcount)

    def list_jobs(self, statuses: Optional[Iterable[JobStatus]] = None) -> List[AssessmentJobRecord]:
        with self._session() as session:
            stmt = select(AssessmentJobModel)
            if statuses is not None:
                stmt = stmt.where(AssessmentJobModel.status.in_(list(statuses)))
            models = session.execute(stmt).scalars().all()
            return [self._to_record(m) for m in models]

    # endregion

    # region mapping
    def _apply(self, model: AssessmentJobModel, job: AssessmentJobRecord) -> None:
        model.project_name = job.project_name
        model.template_id = job.template_id
        model.template_name = job.template_name
        model.analysis_mode = job.analysis_mode
        model.output_language = job.output_language
        model.status = job.status
        model.step = job.step
        model.scope_document_path = job.scope_document_path
        model.scope_document_mime_type = job.scope_document_mime_type
        model.original_template_json = json.dumps(job.original_template)
        model.reference_assessments_json = json.dumps(job.reference_assessments or [])
        model.reference_documents_json = json.dumps(job.reference_documents or [])
        model.item_feedback_json = json.dumps(job.item_feedback or {})
        model.raw_generation_response = job.raw_generation_response
        model.generated_items_json = _dumps_optional(job.generated_items)
        model.raw_estimation_response = job.raw_estimation_response
        model.final_analysis_json = _dumps_optional(job.final_analysis)
        model.last_error = job.last_error
        model.created_at = job.created_at
        model.updated_at = job.updated_at

    def _to_record(self, model: AssessmentJobModel) -> AssessmentJobRecord:
        return AssessmentJobRecord(
            id=model.id,
            project_name=model.project_name or "",
            template_id=model.template_id or "",
            template_name=model.template_name or "",
            analysis_mode=model.analysis_mode,
            output_language=model.output_language,
            status=model.status,
            step=int(model.step or 0),
            scope_document_path=model.scope_document_path or "",
            scope_document_mime_type=model.scope_document_mime_type or "",
            original_template=json.loads(model.original_template_json or "{}"),
            reference_assessments=json.loads(model.reference_assessments_json or "[]"),
            reference_documents=json.loads(model.reference_documents_json or "[]"),
            item_feedback=json.loads(model.item_feedback_json or "{}"),
            raw_generation_response=model.raw_generation_response,
            generated_items=_loads_optional(model.generated_items_json),
            raw_estimation_response=model.raw_estimation_response,
            final_analysis=_loads_optional(model.final_analysis_json),
            last_error=model.last_error,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    # endregion


def _dumps_optional(value) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _loads_optional(value: Optional[str]):
    return None if value is None else json.loads(value)
