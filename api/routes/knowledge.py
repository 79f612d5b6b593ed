from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.dependencies import get_knowledge_base
from presales_assistant.assessment import KnowledgeBase, ReferenceDocument

router = APIRouter(prefix="/knowledge", tags=["knowledge"])


class KnowledgeDocument(BaseModel):
    source: str
    summary: str


@router.post("")
def index_documents(documents: List[KnowledgeDocument], knowledge_base: KnowledgeBase = Depends(get_knowledge_base)):
    cleaned = [doc for doc in documents if doc.source.strip()]
    if not cleaned:
        raise HTTPException(status_code=400, detail="At least one document with a source is required")
    knowledge_base.index_documents(
        ReferenceDocument(source=doc.source.strip(), summary=doc.summary) for doc in cleaned
    )
    return {"indexed": len(cleaned)}


@router.get("/search")
def search_knowledge(query: str, limit: int = 10, knowledge_base: KnowledgeBase = Depends(get_knowledge_base)):
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    hits = knowledge_base.search(query, limit=limit)
    return {"hits": [{"source": hit.source, "summary": hit.summary} for hit in hits]}


@router.delete("/{source:path}")
def delete_document(source: str, knowledge_base: KnowledgeBase = Depends(get_knowledge_base)):
    knowledge_base.delete_source(source)
    return {"status": "deleted", "source": source}
