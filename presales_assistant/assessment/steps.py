"""
Step registry: the assessment lifecycle expressed as data.

Each status maps to an ordinal step, a human label/description, the record
fields expected once the status is reached, a progress estimate and the
operator actions offered while the job sits in that status. The worker and
the status façade both read this table instead of hard-coding UI copy or
progress numbers.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .errors import UnknownStatusError
from .models import AssessmentJobRecord, JobStatus, JobStatusView, StepDefinition

logger = logging.getLogger(__name__)

ACTION_RESUME = "resume"
ACTION_DELETE = "delete"

DEFAULT_STEP_DEFINITIONS: List[StepDefinition] = [
    StepDefinition(
        status=JobStatus.PENDING.value,
        step=1,
        label="Inputs captured",
        description="Scope document and template references are stored and ready for AI generation.",
        expected_fields=["scope_document_path", "scope_document_mime_type", "original_template", "reference_assessments"],
        progress_percent=0,
        actions=[ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.GENERATION_IN_PROGRESS.value,
        step=2,
        label="Generating assessment items",
        description="The automation is creating tailored assessment items from the provided inputs.",
        expected_fields=[],
        progress_percent=15,
        actions=[ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.GENERATION_COMPLETE.value,
        step=3,
        label="Assessment items generated",
        description="Item generation finished successfully and serialized for later steps.",
        expected_fields=["raw_generation_response", "generated_items"],
        progress_percent=45,
        actions=[ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.FAILED_GENERATION.value,
        step=4,
        label="Generation failed",
        description="Item generation encountered an error and can be resumed after repair.",
        expected_fields=["last_error"],
        progress_percent=15,
        terminal=True,
        actions=[ACTION_RESUME, ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.ESTIMATION_IN_PROGRESS.value,
        step=5,
        label="Estimating delivery effort",
        description="The automation is estimating delivery effort for the generated items.",
        expected_fields=["raw_generation_response", "generated_items"],
        progress_percent=60,
        actions=[ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.ESTIMATION_COMPLETE.value,
        step=6,
        label="Estimation finished",
        description="Effort estimation completed and analysis results are being stored.",
        expected_fields=["raw_estimation_response", "final_analysis"],
        progress_percent=90,
        actions=[ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.FAILED_ESTIMATION.value,
        step=7,
        label="Estimation failed",
        description="Effort estimation encountered an error and can be resumed after repair.",
        expected_fields=["generated_items", "last_error"],
        progress_percent=60,
        terminal=True,
        actions=[ACTION_RESUME, ACTION_DELETE],
    ),
    StepDefinition(
        status=JobStatus.COMPLETE.value,
        step=8,
        label="Assessment complete",
        description="Assessment processing finished successfully and results are ready for review.",
        expected_fields=["generated_items", "raw_estimation_response", "final_analysis"],
        progress_percent=100,
        terminal=True,
        actions=[ACTION_DELETE],
    ),
]


class StepRegistry:
    """
    Immutable lookup of step definitions keyed by status. An unknown status is
    a deployment/schema mismatch and raises UnknownStatusError.
    """

    def __init__(self, definitions: Iterable[StepDefinition]):
        table: Dict[str, StepDefinition] = {}
        for definition in definitions:
            table[definition.status] = definition
        self._table: Mapping[str, StepDefinition] = MappingProxyType(table)

    @classmethod
    def default(cls) -> "StepRegistry":
        return cls(DEFAULT_STEP_DEFINITIONS)

    @classmethod
    def load(cls, repository, seed: Optional[Iterable[StepDefinition]] = None) -> "StepRegistry":
        """
        Seed the durable step table (insert or update by status) and load it
        into memory. Called once at startup.
        """
        repository.upsert_step_definitions(list(seed if seed is not None else DEFAULT_STEP_DEFINITIONS))
        definitions = repository.list_step_definitions()
        registry = cls(definitions)
        missing = [status.value for status in JobStatus if status.value not in registry._table]
        if missing:
            raise UnknownStatusError(", ".join(missing))
        logger.info("Loaded %d step definitions", len(definitions))
        return registry

    def get(self, status: Union[JobStatus, str]) -> StepDefinition:
        key = status.value if isinstance(status, JobStatus) else str(status)
        definition = self._table.get(key)
        if definition is None:
            raise UnknownStatusError(key)
        return definition

    def ordinal(self, status: Union[JobStatus, str]) -> int:
        return self.get(status).step

    def __contains__(self, status: object) -> bool:
        key = status.value if isinstance(status, JobStatus) else str(status)
        return key in self._table

    def definitions(self) -> List[StepDefinition]:
        return sorted(self._table.values(), key=lambda d: d.step)

    def is_terminal(self, status: Union[JobStatus, str]) -> bool:
        return self.get(status).terminal

    def is_resumable(self, status: Union[JobStatus, str]) -> bool:
        return ACTION_RESUME in self.get(status).actions

    def non_terminal_statuses(self) -> List[JobStatus]:
        return [JobStatus(d.status) for d in self.definitions() if not d.terminal]

    def apply(self, job: AssessmentJobRecord, status: JobStatus) -> AssessmentJobRecord:
        """Move a record to `status`, keeping `step` in lock-step with the registry."""
        job.step = self.ordinal(status)
        job.status = status
        return job

    def describe(self, job: AssessmentJobRecord) -> JobStatusView:
        definition = self.get(job.status)
        failed = ACTION_RESUME in definition.actions
        return JobStatusView(
            id=job.id,
            status=definition.status,
            step=definition.step,
            label=definition.label,
            description=definition.description,
            progress_percent=definition.progress_percent,
            last_error=job.last_error if failed else None,
            actions=list(definition.actions) if failed else [],
        )
