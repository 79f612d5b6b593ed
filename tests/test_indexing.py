from presales_assistant.assessment import InMemoryKnowledgeBase, ReferenceDocument, WhooshKnowledgeBase


DOCUMENTS = [
    ReferenceDocument(source="kb/claims.md", summary="Claims are approved by two reviewers before payout."),
    ReferenceDocument(source="kb/sso.md", summary="Single sign-on uses the corporate identity provider."),
]


def test_whoosh_knowledge_base(tmp_path):
    kb = WhooshKnowledgeBase(tmp_path / "whoosh")
    kb.index_documents(DOCUMENTS)

    fetched = kb.fetch(["kb/sso.md", "kb/missing.md", "kb/claims.md"])
    assert [doc.source for doc in fetched] == ["kb/sso.md", "kb/claims.md"]
    assert fetched[0].summary.startswith("Single sign-on")

    hits = kb.search("reviewers")
    assert [hit.source for hit in hits] == ["kb/claims.md"]

    # Re-indexing a source replaces its summary instead of duplicating it.
    kb.index_documents([ReferenceDocument(source="kb/claims.md", summary="Claims need one reviewer.")])
    assert kb.fetch(["kb/claims.md"])[0].summary == "Claims need one reviewer."
    assert kb.search("payout") == []

    kb.delete_source("kb/sso.md")
    assert kb.fetch(["kb/sso.md"]) == []

    reopened = WhooshKnowledgeBase(tmp_path / "whoosh")
    assert [doc.source for doc in reopened.fetch(["kb/claims.md"])] == ["kb/claims.md"]


def test_in_memory_knowledge_base():
    kb = InMemoryKnowledgeBase(DOCUMENTS)
    assert [doc.source for doc in kb.fetch(["kb/claims.md", "nope"])] == ["kb/claims.md"]
    assert [doc.source for doc in kb.search("identity")] == ["kb/sso.md"]
    kb.delete_source("kb/claims.md")
    assert kb.fetch(["kb/claims.md"]) == []
