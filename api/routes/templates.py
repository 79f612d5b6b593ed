from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_templates
from presales_assistant.assessment import TemplateNotFoundError, TemplateStore

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("")
def list_templates(templates: TemplateStore = Depends(get_templates)):
    return [{"id": template_id} for template_id in templates.list_template_ids()]


@router.get("/{template_id}")
def get_template(template_id: str, templates: TemplateStore = Depends(get_templates)):
    try:
        template = templates.get_template(template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return template.to_dict()
