from __future__ import annotations

import logging
import mimetypes
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    def job_dir(self, job_id: str) -> Path:
        return self.root / "scope_documents" / str(job_id)

    def scope_document_path(self, job_id: str, suffix: str = "") -> Path:
        return self.job_dir(job_id) / f"original{suffix}"

    def converted_text_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "converted.md"


class LocalDocumentStorage:
    """
    Manages the filesystem layout for submitted scope documents and the text
    extracted from them.
    """

    def __init__(self, storage_paths: StoragePaths):
        self.paths = storage_paths

    def ensure_base_dirs(self, job_id: str) -> None:
        self.paths.job_dir(job_id).mkdir(parents=True, exist_ok=True)

    def save_scope_document(self, job_id: str, filename: str, content: bytes) -> Path:
        self.ensure_base_dirs(job_id)
        suffix = Path(filename or "").suffix.lower()
        target = self.paths.scope_document_path(job_id, suffix)
        target.write_bytes(content)
        logger.debug("Stored scope document for job %s at %s (%d bytes)", job_id, target, len(content))
        return target

    def write_converted_text(self, job_id: str, text: str) -> Path:
        self.ensure_base_dirs(job_id)
        target = self.paths.converted_text_path(job_id)
        target.write_text(text, encoding="utf-8")
        return target

    def read_converted_text(self, job_id: str) -> Optional[str]:
        path = self.paths.converted_text_path(job_id)
        return path.read_text(encoding="utf-8") if path.exists() else None

    def delete_job_documents(self, job_id: str) -> None:
        job_dir = self.paths.job_dir(job_id)
        if job_dir.exists():
            shutil.rmtree(job_dir)


def guess_mime_type(filename: str, declared: Optional[str] = None) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or declared or "application/octet-stream"
