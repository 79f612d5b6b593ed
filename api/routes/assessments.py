from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from api.dependencies import get_service
from api.routes.jobs import job_to_dict
from presales_assistant.assessment import (
    AssessmentService,
    InvalidSubmissionError,
    JobNotFoundError,
    ResultNotReadyError,
    ScopeDocumentUpload,
    TemplateNotFoundError,
)

router = APIRouter(prefix="/assessments", tags=["assessments"])


def _split_ids(values: Optional[List[str]]) -> List[str]:
    # Accept repeated form fields as well as a single comma-separated field.
    ids: List[str] = []
    for value in values or []:
        ids.extend(part.strip() for part in value.split(",") if part.strip())
    return ids


@router.post("", status_code=202)
async def submit_assessment(
    file: UploadFile = File(...),
    template_id: str = Form(...),
    project_name: str = Form(...),
    analysis_mode: str = Form("Interpretive"),
    output_language: str = Form("English"),
    reference_result_ids: Optional[List[str]] = Form(None),
    reference_document_sources: Optional[List[str]] = Form(None),
    service: AssessmentService = Depends(get_service),
):
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    upload = ScopeDocumentUpload(
        filename=file.filename or "scope-document",
        content=payload,
        mime_type=file.content_type or "application/octet-stream",
    )
    try:
        job = await service.submit_job(
            template_id=template_id,
            project_name=project_name,
            scope_document=upload,
            analysis_mode=analysis_mode,
            output_language=output_language,
            reference_result_ids=_split_ids(reference_result_ids),
            reference_document_sources=[s.strip() for s in reference_document_sources or [] if s.strip()],
        )
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidSubmissionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return job_to_dict(job)


@router.get("/{job_id}/result")
async def get_assessment_result(job_id: str, service: AssessmentService = Depends(get_service)):
    try:
        result = await service.get_final_result(job_id)
    except (JobNotFoundError, ResultNotReadyError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    payload = result.to_dict()
    payload["item_count"] = result.item_count
    return payload
