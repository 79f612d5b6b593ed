from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    PENDING = "Pending"
    GENERATION_IN_PROGRESS = "GenerationInProgress"
    GENERATION_COMPLETE = "GenerationComplete"
    FAILED_GENERATION = "FailedGeneration"
    ESTIMATION_IN_PROGRESS = "EstimationInProgress"
    ESTIMATION_COMPLETE = "EstimationComplete"
    FAILED_ESTIMATION = "FailedEstimation"
    COMPLETE = "Complete"


class AnalysisMode(str, Enum):
    INTERPRETIVE = "Interpretive"
    STRICT = "Strict"


class OutputLanguage(str, Enum):
    ENGLISH = "English"
    INDONESIAN = "Indonesian"


class ItemOrigin(str, Enum):
    TEMPLATE = "template"
    GENERATED = "generated"


AI_GENERATED_SECTION_TYPE = "AI-Generated"
PROJECT_LEVEL_SECTION_TYPE = "Project-Level"

ALLOWED_CATEGORIES = (
    "New UI",
    "New Interface",
    "New Backgrounder",
    "Adjust Existing UI",
    "Adjust Existing Logic",
)
_CATEGORY_LOOKUP = {category.lower(): category for category in ALLOWED_CATEGORIES}


def normalize_category(value: Optional[str]) -> str:
    if not value or not value.strip():
        return ALLOWED_CATEGORIES[0]
    return _CATEGORY_LOOKUP.get(value.strip().lower(), ALLOWED_CATEGORIES[0])


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    # Snapshots arrive either snake_case (our own records) or camelCase (web JSON).
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class StepDefinition:
    status: str
    step: int
    label: str
    description: str
    expected_fields: List[str] = field(default_factory=list)
    progress_percent: int = 0
    terminal: bool = False
    actions: List[str] = field(default_factory=list)


@dataclass
class TemplateItem:
    item_id: str
    item_name: str
    item_detail: str = ""
    category: str = ALLOWED_CATEGORIES[0]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateItem":
        return cls(
            item_id=str(_pick(data, "item_id", "itemId", default="")).strip(),
            item_name=str(_pick(data, "item_name", "itemName", default="")).strip(),
            item_detail=str(_pick(data, "item_detail", "itemDetail", default="")).strip(),
            category=normalize_category(_pick(data, "category")),
        )


@dataclass
class TemplateSection:
    section_name: str
    type: str = PROJECT_LEVEL_SECTION_TYPE
    items: List[TemplateItem] = field(default_factory=list)

    @property
    def is_ai_generated(self) -> bool:
        return self.type.strip().lower() == AI_GENERATED_SECTION_TYPE.lower()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateSection":
        return cls(
            section_name=str(_pick(data, "section_name", "sectionName", default="")).strip(),
            type=str(_pick(data, "type", default=PROJECT_LEVEL_SECTION_TYPE)),
            items=[TemplateItem.from_dict(item) for item in _pick(data, "items", default=[])],
        )


@dataclass
class ProjectTemplate:
    id: Optional[str]
    template_name: str
    estimation_columns: List[str] = field(default_factory=list)
    sections: List[TemplateSection] = field(default_factory=list)

    def iter_items(self):
        for section in self.sections:
            for item in section.items:
                yield section, item

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectTemplate":
        if not isinstance(data, dict):
            raise ValueError("Template snapshot must be a JSON object")
        template_id = _pick(data, "id", "template_id", "templateId")
        return cls(
            id=str(template_id) if template_id is not None else None,
            template_name=str(_pick(data, "template_name", "templateName", default="")),
            estimation_columns=[str(col) for col in _pick(data, "estimation_columns", "estimationColumns", default=[])],
            sections=[TemplateSection.from_dict(section) for section in _pick(data, "sections", default=[])],
        )


@dataclass
class ReferenceDocument:
    source: str
    summary: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferenceDocument":
        return cls(source=str(data.get("source", "")).strip(), summary=str(data.get("summary", "")).strip())


@dataclass
class ScopeDocumentUpload:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


@dataclass
class GeneratedItem:
    item_id: str
    section_name: str
    item_name: str
    item_detail: str
    category: str
    is_needed: bool = True
    origin: ItemOrigin = ItemOrigin.TEMPLATE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["origin"] = self.origin.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedItem":
        return cls(
            item_id=data["item_id"],
            section_name=data.get("section_name", ""),
            item_name=data.get("item_name", ""),
            item_detail=data.get("item_detail", ""),
            category=normalize_category(data.get("category")),
            is_needed=bool(data.get("is_needed", True)),
            origin=ItemOrigin(data.get("origin", ItemOrigin.TEMPLATE.value)),
        )


@dataclass
class AnalyzedItem:
    item_id: str
    is_needed: bool
    estimates: Dict[str, Optional[float]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzedItem":
        return cls(
            item_id=data["item_id"],
            is_needed=bool(data.get("is_needed", True)),
            estimates=dict(data.get("estimates") or {}),
        )


@dataclass
class AssessmentItem:
    item_id: str
    item_name: str
    item_detail: str
    category: str
    is_needed: bool
    estimates: Dict[str, Optional[float]] = field(default_factory=dict)
    total_hours: float = 0.0


@dataclass
class AssessmentSection:
    section_name: str
    items: List[AssessmentItem] = field(default_factory=list)


@dataclass
class AssessmentResult:
    job_id: str
    template_id: str
    template_name: str
    project_name: str
    estimation_columns: List[str]
    sections: List[AssessmentSection]
    total_hours: float = 0.0

    @property
    def item_count(self) -> int:
        return sum(len(section.items) for section in self.sections)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentResult":
        sections = []
        for section in data.get("sections") or []:
            items = [
                AssessmentItem(
                    item_id=item.get("item_id", ""),
                    item_name=item.get("item_name", ""),
                    item_detail=item.get("item_detail", ""),
                    category=normalize_category(item.get("category")),
                    is_needed=bool(item.get("is_needed", True)),
                    estimates=dict(item.get("estimates") or {}),
                    total_hours=float(item.get("total_hours") or 0.0),
                )
                for item in section.get("items") or []
            ]
            sections.append(AssessmentSection(section_name=section.get("section_name", ""), items=items))
        return cls(
            job_id=data.get("job_id", ""),
            template_id=str(data.get("template_id", "")),
            template_name=data.get("template_name", ""),
            project_name=data.get("project_name", ""),
            estimation_columns=list(data.get("estimation_columns") or []),
            sections=sections,
            total_hours=float(data.get("total_hours") or 0.0),
        )


@dataclass
class AssessmentJobRecord:
    id: str
    project_name: str
    template_id: str
    analysis_mode: AnalysisMode
    output_language: OutputLanguage
    status: JobStatus
    step: int
    scope_document_path: str
    scope_document_mime_type: str
    original_template: Dict[str, Any]
    template_name: str = ""
    reference_assessments: List[Dict[str, Any]] = field(default_factory=list)
    reference_documents: List[Dict[str, Any]] = field(default_factory=list)
    item_feedback: Dict[str, str] = field(default_factory=dict)
    raw_generation_response: Optional[str] = None
    generated_items: Optional[List[Dict[str, Any]]] = None
    raw_estimation_response: Optional[str] = None
    final_analysis: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class JobStatusView:
    id: str
    status: str
    step: int
    label: str
    description: str
    progress_percent: int
    last_error: Optional[str] = None
    actions: List[str] = field(default_factory=list)


@dataclass
class AssessmentJobSummary:
    id: str
    project_name: str
    template_id: str
    template_name: str
    status: JobStatus
    step: int
    created_at: datetime
    updated_at: datetime
