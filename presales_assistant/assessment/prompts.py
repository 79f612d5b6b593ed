"""Prompt builders for the two assessment stages."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .models import (
    ALLOWED_CATEGORIES,
    AnalysisMode,
    GeneratedItem,
    OutputLanguage,
    ProjectTemplate,
    ReferenceDocument,
    normalize_category,
)

GENERATION_OUTPUT_RULES = (
    'Respond ONLY with a JSON object: {"items": [{"itemId", "sectionName", "itemName", "itemDetail", '
    '"category", "isNeeded"}]}. Use the itemId of an existing template item when the requirement maps to it; '
    "omit itemId for new items. Avoid splitting trivial variants; prefer merging unless the estimation impact "
    "is larger than S. If a similar component exists in the references, append the tag [REUSE] to itemDetail. "
    "No markdown."
)

ESTIMATION_RULES = "\n".join(
    [
        "Rules:",
        "- Distribute effort. For each item, determine the relevant estimation columns based on the work described "
        "and assign hours ONLY to those columns. All other columns for that item MUST be 0.",
        "- The sum of the hours across all columns for an item should reflect its total complexity.",
        "- Infer roles from itemName and itemDetail: UI work implies frontend, database or API work implies backend, "
        "requirements imply business analysis, test scenarios imply QA.",
        "- Prefer the smaller size when the scope is ambiguous. Adjust Existing UI and Adjust Existing Logic items "
        "should stay at medium size or below unless the document gives an explicit reason.",
        "- Decide whether each item is in scope and set isNeeded accordingly.",
        '- Respond ONLY with a JSON object: {"items": [{"itemId", "isNeeded", "estimates": {"<column>": hours}}]} '
        "with numbers in hours (decimals allowed). No markdown.",
    ]
)

_REPAIR_INSTRUCTIONS = (
    "The following text was supposed to be valid JSON but failed to parse ({error}). "
    "Return the same content as strictly valid JSON with no commentary and no markdown."
)


def _dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _language_instruction(language: OutputLanguage, subject: str) -> str:
    if language == OutputLanguage.INDONESIAN:
        return f"Write {subject} in Bahasa Indonesia."
    return f"Write {subject} in English."


def _document_context(documents: Iterable[Mapping[str, Any]]) -> List[Dict[str, str]]:
    results = []
    for data in documents or []:
        document = ReferenceDocument.from_dict(data)
        if document.source and document.summary:
            results.append({"source": document.source, "summary": document.summary})
    return results


def _append_scope_document(prompt: str, scope_text: Optional[str]) -> str:
    if not scope_text or not scope_text.strip():
        return prompt
    return f"{prompt}\n\nScope Document:\n{scope_text.strip()}\n"


def build_generation_prompt(
    template: ProjectTemplate,
    project_name: str,
    scope_text: str,
    analysis_mode: AnalysisMode,
    output_language: OutputLanguage,
    reference_documents: Sequence[Mapping[str, Any]] = (),
) -> str:
    documents = _document_context(reference_documents)
    context = {
        "projectName": project_name,
        "allowedCategories": list(ALLOWED_CATEGORIES),
        "sections": [
            {
                "sectionName": section.section_name,
                "type": section.type,
                "items": [
                    {
                        "itemId": item.item_id,
                        "itemName": item.item_name,
                        "itemDetail": item.item_detail,
                        "category": normalize_category(item.category),
                    }
                    for item in section.items
                ],
            }
            for section in template.sections
        ],
        "referenceDocuments": documents,
    }

    parts = []
    if analysis_mode == AnalysisMode.STRICT:
        parts.append(
            "You are a meticulous business analyst reviewing the attached scope document. Decide which existing "
            "template items are required by what the document explicitly states. Do not propose items that are "
            "not already in the template."
        )
    else:
        parts.append(
            "You are a senior business analyst reviewing the attached scope document. Decide which existing "
            "template items are required and identify additional backlog items for the sections marked as "
            "AI-Generated."
        )
    parts.append(f"Category must be one of: {', '.join(ALLOWED_CATEGORIES)}.")
    parts.append(_language_instruction(output_language, "itemName and itemDetail"))
    if documents:
        parts.append(
            "Use the provided knowledge base summaries only to clarify terminology; never introduce functionality "
            "that is absent from the scope document."
            if analysis_mode == AnalysisMode.STRICT
            else "Leverage the provided knowledge base summaries when they clarify requirements or provide "
            "helpful precedents."
        )

    prompt = f"{' '.join(parts)}\n\nProject Context:\n{_dumps(context)}\n\n{GENERATION_OUTPUT_RULES}"
    return _append_scope_document(prompt, scope_text)


def _reference_context(references: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> List[Dict[str, Any]]:
    results = []
    for reference in references or []:
        sections = []
        for section in reference.get("sections") or []:
            items = []
            for item in section.get("items") or []:
                estimates = item.get("estimates") or {}
                if columns:
                    estimates = {column: estimates.get(column) for column in columns}
                items.append(
                    {
                        "itemId": item.get("item_id", ""),
                        "itemName": item.get("item_name", ""),
                        "itemDetail": item.get("item_detail", ""),
                        "category": normalize_category(item.get("category")),
                        "isNeeded": bool(item.get("is_needed", True)),
                        "estimates": estimates,
                    }
                )
            sections.append({"sectionName": section.get("section_name", ""), "items": items})
        results.append(
            {
                "projectName": reference.get("project_name", ""),
                "totalHours": reference.get("total_hours", 0.0),
                "sections": sections,
            }
        )
    return results


def build_estimation_prompt(
    project_name: str,
    scope_text: str,
    items: Sequence[GeneratedItem],
    estimation_columns: Sequence[str],
    analysis_mode: AnalysisMode,
    output_language: OutputLanguage,
    reference_assessments: Sequence[Mapping[str, Any]] = (),
    reference_documents: Sequence[Mapping[str, Any]] = (),
    item_feedback: Optional[Mapping[str, str]] = None,
) -> str:
    documents = _document_context(reference_documents)
    similar = _reference_context(reference_assessments, estimation_columns)
    feedback = {item_id: text for item_id, text in (item_feedback or {}).items() if text and text.strip()}

    sections: Dict[str, List[Dict[str, Any]]] = {}
    for item in items:
        if not item.is_needed:
            continue
        entry = {
            "itemId": item.item_id,
            "itemName": item.item_name,
            "itemDetail": item.item_detail,
            "category": item.category,
        }
        if item.item_id in feedback:
            entry["reviewerFeedback"] = feedback[item.item_id]
        sections.setdefault(item.section_name, []).append(entry)

    payload = {
        "projectName": project_name,
        "estimationColumns": list(estimation_columns),
        "sections": [{"sectionName": name, "items": entries} for name, entries in sections.items()],
        "similarAssessments": similar,
        "referenceDocuments": documents,
    }

    parts = []
    if analysis_mode == AnalysisMode.STRICT:
        parts.append(
            "You are an experienced software project estimator. The backlog items were transcribed directly from "
            "the uploaded scope document. Evaluate each item exactly as written and estimate its effort."
        )
    else:
        parts.append(
            "You are an experienced software project estimator. Review every backlog item provided in the context, "
            "confirm it is needed for the uploaded scope document and estimate its effort."
        )
    if documents:
        parts.append(
            "Use the supplied knowledge base summaries only for clarification; do not broaden the scope beyond "
            "the document."
            if analysis_mode == AnalysisMode.STRICT
            else "Consider the supplied knowledge base summaries when they add relevant background or precedent."
        )
    if similar:
        parts.append(
            "Use the similar assessment history to calibrate the scale of effort required for comparable projects."
        )
    if feedback:
        parts.append("Some items carry reviewerFeedback from a previous attempt; address it in the new estimate.")
    if not estimation_columns:
        parts.append('No estimation columns are defined; report effort under a single "EffortHours" column.')
    parts.append(_language_instruction(output_language, "any textual justification"))

    prompt = f"{' '.join(parts)}\n\nProject Context:\n{_dumps(payload)}\n\n{ESTIMATION_RULES}"
    return _append_scope_document(prompt, scope_text)


def build_repair_prompt(raw_text: str, error: str) -> str:
    return f"{_REPAIR_INSTRUCTIONS.format(error=error)}\n\n{raw_text}"
