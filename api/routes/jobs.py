from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from api.dependencies import get_service
from presales_assistant.assessment import (
    AssessmentJobRecord,
    AssessmentService,
    InvalidJobStateError,
    JobNotFoundError,
)

router = APIRouter(prefix="/jobs", tags=["jobs"])


class ResumeRequest(BaseModel):
    item_feedback: Optional[Dict[str, str]] = None


def job_to_dict(job: AssessmentJobRecord) -> dict:
    return {
        "id": job.id,
        "project_name": job.project_name,
        "template_id": job.template_id,
        "template_name": job.template_name,
        "analysis_mode": job.analysis_mode.value,
        "output_language": job.output_language.value,
        "status": job.status.value,
        "step": job.step,
        "scope_document_mime_type": job.scope_document_mime_type,
        "reference_assessment_count": len(job.reference_assessments or []),
        "reference_documents": job.reference_documents,
        "item_feedback": job.item_feedback,
        "raw_generation_response": job.raw_generation_response,
        "generated_items": job.generated_items,
        "raw_estimation_response": job.raw_estimation_response,
        "final_analysis": job.final_analysis,
        "last_error": job.last_error,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
    }


@router.get("")
async def list_jobs(service: AssessmentService = Depends(get_service)):
    summaries = await service.list_jobs()
    return [
        {
            "id": s.id,
            "project_name": s.project_name,
            "template_id": s.template_id,
            "template_name": s.template_name,
            "status": s.status.value,
            "step": s.step,
            "created_at": s.created_at.isoformat() if s.created_at else None,
            "updated_at": s.updated_at.isoformat() if s.updated_at else None,
        }
        for s in summaries
    ]


@router.get("/{job_id}")
async def get_job(job_id: str, service: AssessmentService = Depends(get_service)):
    try:
        job = await service.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return job_to_dict(job)


@router.get("/{job_id}/status")
async def get_job_status(job_id: str, service: AssessmentService = Depends(get_service)):
    try:
        view = await service.get_status(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    payload = {
        "id": view.id,
        "status": view.status,
        "step": view.step,
        "label": view.label,
        "description": view.description,
        "progress_percent": view.progress_percent,
    }
    if view.last_error is not None or view.actions:
        payload["last_error"] = view.last_error
        payload["actions"] = view.actions
    return payload


@router.post("/{job_id}/resume")
async def resume_job(
    job_id: str,
    payload: Optional[ResumeRequest] = Body(default=None),
    service: AssessmentService = Depends(get_service),
):
    try:
        job = await service.resume_job(job_id, item_feedback=payload.item_feedback if payload else None)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return job_to_dict(job)


@router.delete("/{job_id}")
async def delete_job(job_id: str, service: AssessmentService = Depends(get_service)):
    deleted = await service.delete_job(job_id)
    return {"status": "deleted" if deleted else "absent", "job_id": job_id}
