"""
Read-only collaborators consulted once at submission time: project templates
and prior completed assessments. Whatever they return is frozen into the job
record, so later edits upstream never change an in-flight job.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from .errors import InvalidSubmissionError, TemplateNotFoundError
from .models import JobStatus, ProjectTemplate

logger = logging.getLogger(__name__)


class TemplateStore(Protocol):
    def get_template(self, template_id: str) -> ProjectTemplate:
        ...

    def list_template_ids(self) -> List[str]:
        ...


class InMemoryTemplateStore:
    def __init__(self, templates: Iterable[ProjectTemplate] = ()):
        self.templates: Dict[str, ProjectTemplate] = {}
        for template in templates:
            self.add(template)

    def add(self, template: ProjectTemplate) -> None:
        if not template.id:
            raise ValueError("Template must have an id to be stored")
        self.templates[template.id] = template

    def get_template(self, template_id: str) -> ProjectTemplate:
        template = self.templates.get(str(template_id))
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def list_template_ids(self) -> List[str]:
        return sorted(self.templates)


class JsonDirectoryTemplateStore:
    """
    Templates stored as `<template_dir>/<template_id>.json`. Files are read on
    every lookup so edits show up for the next submission.
    """

    def __init__(self, template_dir: Path):
        self.template_dir = Path(template_dir)

    def _path_for(self, template_id: str) -> Path:
        safe_id = "".join(ch for ch in str(template_id) if ch.isalnum() or ch in "-_")
        return self.template_dir / f"{safe_id}.json"

    def get_template(self, template_id: str) -> ProjectTemplate:
        path = self._path_for(template_id)
        if not path.exists():
            raise TemplateNotFoundError(template_id)
        data = json.loads(path.read_text(encoding="utf-8"))
        template = ProjectTemplate.from_dict(data)
        if template.id is None:
            template.id = str(template_id)
        return template

    def list_template_ids(self) -> List[str]:
        if not self.template_dir.exists():
            return []
        return sorted(p.stem for p in self.template_dir.glob("*.json"))


class ReferenceResultStore:
    """Prior completed assessments, read from the job repository."""

    def __init__(self, repository):
        self.repository = repository

    def get_results(self, job_ids: Optional[Iterable[str]]) -> List[dict]:
        results = []
        for job_id in job_ids or []:
            job = self.repository.get_job(job_id)
            if job is None:
                raise InvalidSubmissionError(f"Reference assessment not found: {job_id}")
            if job.status != JobStatus.COMPLETE or not job.final_analysis:
                raise InvalidSubmissionError(f"Reference assessment {job_id} is not complete (status: {job.status.value})")
            results.append(job.final_analysis)
        logger.debug("Resolved %d reference assessments", len(results))
        return results
