"""
The two collaborator-backed stages of an assessment job.

Each stage makes one `complete(prompt)` call and parses the untrusted text it
gets back. A stage never touches the repository: it returns a StageOutcome
for the worker to commit, or raises StageError (carrying the raw text) /
CompletionError for the worker to record as a failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .documents import ScopeDocumentLoader
from .errors import StageError
from .estimation import EstimationPolicy, apply_policy
from .llm import CompletionClient, parse_json_response
from .models import (
    AI_GENERATED_SECTION_TYPE,
    AnalysisMode,
    AnalyzedItem,
    AssessmentItem,
    AssessmentJobRecord,
    AssessmentResult,
    AssessmentSection,
    GeneratedItem,
    ItemOrigin,
    ProjectTemplate,
    normalize_category,
)
from .prompts import build_estimation_prompt, build_generation_prompt, build_repair_prompt

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATION_COLUMN = "EffortHours"


@dataclass
class StageOutcome:
    raw_response: str
    payload: Any
    repaired_response: Optional[str] = None


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ("true", "yes", "y", "1", "in"):
        return True
    if text in ("false", "no", "n", "0", "out"):
        return False
    return default


def _text(entry: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def normalize_estimate(value: Any) -> Optional[float]:
    """Round to two decimals; anything that is not a finite, non-negative number becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return round(number, 2)


def load_template(job: AssessmentJobRecord) -> ProjectTemplate:
    try:
        return ProjectTemplate.from_dict(job.original_template)
    except (ValueError, TypeError, AttributeError) as exc:
        raise StageError(f"Template snapshot for job {job.id} is invalid: {exc}") from exc


class _CompletionStage:
    name = "stage"

    def __init__(self, client: CompletionClient, repair_invalid_json: bool = False):
        self.client = client
        self.repair_invalid_json = repair_invalid_json

    async def _complete_json(self, prompt: str) -> Tuple[str, Any, Optional[str]]:
        """Returns (raw model text, parsed JSON, repaired text or None)."""
        raw = await self.client.complete(prompt)
        try:
            return raw, parse_json_response(raw), None
        except json.JSONDecodeError as exc:
            if not self.repair_invalid_json:
                raise StageError(f"{self.name.capitalize()} response is not valid JSON: {exc}", raw) from exc
            logger.warning("%s response is not valid JSON (%s); asking the model to repair it", self.name, exc)
            repaired = await self.client.complete(build_repair_prompt(raw, str(exc)))
            try:
                data = parse_json_response(repaired)
            except json.JSONDecodeError as repair_exc:
                raise StageError(
                    f"{self.name.capitalize()} response is not valid JSON, even after repair: {repair_exc}", raw
                ) from repair_exc
            logger.debug("%s response repaired: %s", self.name, repaired)
            return raw, data, repaired


class GenerationStage(_CompletionStage):
    """Produces the job's item list from the scope document and template snapshot."""

    name = "generation"

    def __init__(
        self,
        client: CompletionClient,
        document_loader: ScopeDocumentLoader,
        repair_invalid_json: bool = False,
    ):
        super().__init__(client, repair_invalid_json)
        self.document_loader = document_loader

    async def run(self, job: AssessmentJobRecord) -> StageOutcome:
        template = load_template(job)
        scope_text = await load_scope_text(self.document_loader, job)
        prompt = build_generation_prompt(
            template=template,
            project_name=job.project_name,
            scope_text=scope_text,
            analysis_mode=job.analysis_mode,
            output_language=job.output_language,
            reference_documents=job.reference_documents,
        )
        raw, data, repaired = await self._complete_json(prompt)
        items = parse_generated_items(data, template, job.analysis_mode, raw)
        logger.info(
            "Generation for job %s produced %d items (%d needed)",
            job.id,
            len(items),
            sum(1 for item in items if item.is_needed),
        )
        return StageOutcome(raw_response=raw, payload=[item.to_dict() for item in items], repaired_response=repaired)


class EstimationStage(_CompletionStage):
    """Estimates effort per column for the items generation produced."""

    name = "estimation"

    def __init__(
        self,
        client: CompletionClient,
        document_loader: ScopeDocumentLoader,
        repair_invalid_json: bool = False,
        policy: Optional[EstimationPolicy] = None,
    ):
        super().__init__(client, repair_invalid_json)
        self.document_loader = document_loader
        self.policy = policy

    async def run(self, job: AssessmentJobRecord) -> StageOutcome:
        template = load_template(job)
        if job.generated_items is None:
            raise StageError(f"Job {job.id} has no generated items to estimate")
        try:
            items = [GeneratedItem.from_dict(data) for data in job.generated_items]
        except (KeyError, ValueError, TypeError) as exc:
            raise StageError(f"Generated items for job {job.id} are invalid: {exc}") from exc

        scope_text = await load_scope_text(self.document_loader, job)
        prompt = build_estimation_prompt(
            project_name=job.project_name,
            scope_text=scope_text,
            items=items,
            estimation_columns=template.estimation_columns,
            analysis_mode=job.analysis_mode,
            output_language=job.output_language,
            reference_assessments=job.reference_assessments,
            reference_documents=job.reference_documents,
            item_feedback=job.item_feedback,
        )
        raw, data, repaired = await self._complete_json(prompt)
        analyzed = parse_analyzed_items(data, items, raw)
        columns = resolve_estimation_columns(template.estimation_columns, analyzed)
        result = build_assessment_result(
            job, template, items, analyzed, columns, references=job.reference_assessments, policy=self.policy
        )
        logger.info(
            "Estimation for job %s covered %d items, %.2f total hours",
            job.id,
            len(analyzed),
            result.total_hours,
        )
        return StageOutcome(raw_response=raw, payload=result.to_dict(), repaired_response=repaired)


async def load_scope_text(loader: ScopeDocumentLoader, job: AssessmentJobRecord) -> str:
    try:
        return await asyncio.to_thread(
            loader.load_text, job.id, job.scope_document_path, job.scope_document_mime_type
        )
    except (OSError, RuntimeError) as exc:
        raise StageError(f"Unable to read scope document for job {job.id}: {exc}") from exc


def _response_items(data: Any) -> Optional[list]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    return None


def parse_generated_items(
    data: Any,
    template: ProjectTemplate,
    analysis_mode: AnalysisMode,
    raw: Optional[str] = None,
) -> List[GeneratedItem]:
    """
    Merge the model's item list into the template. Template items come back
    in template order, needed only when the model mentioned them; interpretive
    mode appends new items after them.
    """
    entries = _response_items(data)
    if entries is None:
        raise StageError("Generation response must be a JSON array or an object with an 'items' array", raw)

    items: List[GeneratedItem] = []
    by_id: Dict[str, GeneratedItem] = {}
    by_name: Dict[str, GeneratedItem] = {}
    for section, template_item in template.iter_items():
        item = GeneratedItem(
            item_id=template_item.item_id,
            section_name=section.section_name,
            item_name=template_item.item_name,
            item_detail=template_item.item_detail,
            category=normalize_category(template_item.category),
            is_needed=False,
            origin=ItemOrigin.TEMPLATE,
        )
        items.append(item)
        if item.item_id:
            by_id.setdefault(item.item_id.lower(), item)
        if item.item_name:
            by_name.setdefault(item.item_name.lower(), item)

    section_names = {section.section_name.lower(): section.section_name for section in template.sections}
    ai_sections = [section.section_name for section in template.sections if section.is_ai_generated]
    placed = 0
    dropped = 0

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise StageError(f"Generation item #{index + 1} is not a JSON object", raw)
        item_id = _text(entry, "itemId", "item_id", "id")
        item_name = _text(entry, "itemName", "item_name", "name")
        if not item_id and not item_name:
            raise StageError(f"Generation item #{index + 1} has neither itemId nor itemName", raw)

        match = by_id.get(item_id.lower()) if item_id else None
        if match is None and item_name:
            match = by_name.get(item_name.lower())
        if match is not None:
            match.is_needed = _as_bool(entry.get("isNeeded", entry.get("is_needed")), True)
            continue

        if analysis_mode == AnalysisMode.STRICT or not item_name:
            dropped += 1
            continue

        requested = _text(entry, "sectionName", "section_name", "section")
        if requested and requested.lower() in section_names:
            section_name = section_names[requested.lower()]
        elif ai_sections:
            section_name = ai_sections[placed % len(ai_sections)]
            placed += 1
        else:
            section_name = AI_GENERATED_SECTION_TYPE
        items.append(
            GeneratedItem(
                item_id=f"ai-{uuid.uuid4().hex}",
                section_name=section_name,
                item_name=item_name,
                item_detail=_text(entry, "itemDetail", "item_detail", "detail"),
                category=normalize_category(_text(entry, "category")),
                is_needed=_as_bool(entry.get("isNeeded", entry.get("is_needed")), True),
                origin=ItemOrigin.GENERATED,
            )
        )

    if dropped:
        logger.debug("Dropped %d generation entries that matched no template item", dropped)
    return items


def parse_analyzed_items(data: Any, items: Sequence[GeneratedItem], raw: Optional[str] = None) -> List[AnalyzedItem]:
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise StageError("Estimation response must be a JSON object with an 'items' array", raw)

    known = {item.item_id.lower(): item.item_id for item in items}
    analyzed: Dict[str, AnalyzedItem] = {}
    for entry in data["items"]:
        if not isinstance(entry, dict):
            continue
        item_id = _text(entry, "itemId", "item_id", "id")
        canonical = known.get(item_id.lower()) if item_id else None
        if canonical is None:
            continue
        estimates = entry.get("estimates")
        analyzed[canonical] = AnalyzedItem(
            item_id=canonical,
            is_needed=_as_bool(entry.get("isNeeded", entry.get("is_needed")), True),
            estimates=dict(estimates) if isinstance(estimates, dict) else {},
        )

    if not analyzed and any(item.is_needed for item in items):
        raise StageError("Estimation response did not contain any known itemId", raw)
    return list(analyzed.values())


def resolve_estimation_columns(template_columns: Sequence[str], analyzed: Iterable[AnalyzedItem]) -> List[str]:
    columns = [column for column in template_columns if column and column.strip()]
    if columns:
        return columns
    seen: List[str] = []
    lowered = set()
    for item in analyzed:
        for key in item.estimates:
            if key and key.lower() not in lowered:
                lowered.add(key.lower())
                seen.append(key)
    return seen or [DEFAULT_ESTIMATION_COLUMN]


def _estimate_for(estimates: Dict[str, Any], column: str) -> Optional[float]:
    if column in estimates:
        return normalize_estimate(estimates[column])
    for key, value in estimates.items():
        if key.lower() == column.lower():
            return normalize_estimate(value)
    return None


def build_assessment_result(
    job: AssessmentJobRecord,
    template: ProjectTemplate,
    items: Sequence[GeneratedItem],
    analyzed: Sequence[AnalyzedItem],
    columns: Sequence[str],
    references: Optional[Sequence[Dict[str, Any]]] = None,
    policy: Optional[EstimationPolicy] = None,
) -> AssessmentResult:
    lookup = {entry.item_id: entry for entry in analyzed}
    sections: Dict[str, AssessmentSection] = {}
    for section in template.sections:
        sections.setdefault(section.section_name, AssessmentSection(section_name=section.section_name))

    for item in items:
        entry = lookup.get(item.item_id)
        is_needed = entry.is_needed if entry is not None else item.is_needed
        estimates = {column: None for column in columns}
        if entry is not None and is_needed:
            estimates = {column: _estimate_for(entry.estimates, column) for column in columns}
            if policy is not None:
                estimates = apply_policy(policy, item.item_id, item.category, estimates, references)
        total = round(sum(value for value in estimates.values() if value is not None), 2) if is_needed else 0.0
        target = sections.setdefault(item.section_name, AssessmentSection(section_name=item.section_name))
        target.items.append(
            AssessmentItem(
                item_id=item.item_id,
                item_name=item.item_name,
                item_detail=item.item_detail,
                category=item.category,
                is_needed=is_needed,
                estimates=estimates,
                total_hours=total,
            )
        )

    ordered = list(sections.values())
    return AssessmentResult(
        job_id=job.id,
        template_id=template.id or job.template_id,
        template_name=template.template_name or job.template_name,
        project_name=job.project_name,
        estimation_columns=list(columns),
        sections=ordered,
        total_hours=calculate_total_hours(ordered),
    )


def calculate_total_hours(sections: Iterable[AssessmentSection]) -> float:
    total = 0.0
    for section in sections:
        for item in section.items:
            if item.is_needed:
                total += item.total_hours
    return round(total, 2)
