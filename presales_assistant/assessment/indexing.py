from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Protocol

from whoosh import index
from whoosh.fields import ID, TEXT, Schema
from whoosh.qparser import QueryParser

from .models import ReferenceDocument

logger = logging.getLogger(__name__)


class KnowledgeBase(Protocol):
    def index_documents(self, documents: Iterable[ReferenceDocument]) -> None:
        ...

    def fetch(self, sources: Iterable[str]) -> List[ReferenceDocument]:
        ...

    def search(self, query_str: str, limit: int = 10) -> List[ReferenceDocument]:
        ...

    def delete_source(self, source: str) -> None:
        ...


class InMemoryKnowledgeBase:
    """
    Dictionary-backed knowledge base for tests and local runs. Search is a
    plain case-insensitive substring match over source and summary.
    """

    def __init__(self, documents: Iterable[ReferenceDocument] = ()):
        self.documents: Dict[str, ReferenceDocument] = {}
        self.index_documents(documents)

    def index_documents(self, documents: Iterable[ReferenceDocument]) -> None:
        for document in documents:
            self.documents[document.source] = document

    def fetch(self, sources: Iterable[str]) -> List[ReferenceDocument]:
        found = []
        for source in sources:
            document = self.documents.get(source)
            if document is None:
                logger.warning("Reference document %s not found in knowledge base; skipping", source)
                continue
            found.append(document)
        return found

    def search(self, query_str: str, limit: int = 10) -> List[ReferenceDocument]:
        needle = query_str.lower()
        hits = [d for d in self.documents.values() if needle in d.source.lower() or needle in d.summary.lower()]
        return hits[:limit]

    def delete_source(self, source: str) -> None:
        self.documents.pop(source, None)


class WhooshKnowledgeBase:
    """
    File-system backed Whoosh index of knowledge excerpts. Creates the index
    if not present; indexing a source replaces any earlier entry for it.
    """

    def __init__(self, index_dir: Path):
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.schema = Schema(
            source=ID(stored=True, unique=True),
            summary=TEXT(stored=True),
        )
        if index.exists_in(self.index_dir):
            self.ix = index.open_dir(self.index_dir)
        else:
            self.ix = index.create_in(self.index_dir, self.schema)
        # Whoosh allows a single writer per index.
        self._write_lock = threading.Lock()

    def index_documents(self, documents: Iterable[ReferenceDocument]) -> None:
        with self._write_lock:
            writer = self.ix.writer()
            count = 0
            for document in documents:
                writer.update_document(source=document.source, summary=document.summary or "")
                count += 1
            writer.commit()
        logger.info("Indexed %d knowledge documents", count)

    def delete_source(self, source: str) -> None:
        with self._write_lock:
            writer = self.ix.writer()
            writer.delete_by_term("source", source)
            writer.commit()

    def fetch(self, sources: Iterable[str]) -> List[ReferenceDocument]:
        found = []
        with self.ix.searcher() as searcher:
            for source in sources:
                fields = searcher.document(source=source)
                if fields is None:
                    logger.warning("Reference document %s not found in knowledge base; skipping", source)
                    continue
                found.append(ReferenceDocument(source=fields["source"], summary=fields.get("summary") or ""))
        return found

    def search(self, query_str: str, limit: int = 10) -> List[ReferenceDocument]:
        """
        Return plain records so callers are safe after the searcher closes.
        """
        qp = QueryParser("summary", schema=self.schema)
        q = qp.parse(query_str)
        with self.ix.searcher() as searcher:
            results = searcher.search(q, limit=limit)
            return [
                ReferenceDocument(source=hit.fields().get("source"), summary=hit.fields().get("summary") or "")
                for hit in results
            ]
