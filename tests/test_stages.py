import asyncio
import json
from pathlib import Path

import pytest

from conftest import TEMPLATE_DATA, ScriptedCompletionClient
from presales_assistant.assessment import (
    AnalysisMode,
    AssessmentJobRecord,
    CompletionError,
    ConfigurationError,
    DocumentConverter,
    EstimationPolicy,
    EstimationStage,
    GeminiCompletionClient,
    AnthropicCompletionClient,
    GeneratedItem,
    GenerationStage,
    JobStatus,
    LocalDocumentStorage,
    OutputLanguage,
    ScopeDocumentLoader,
    StageError,
    StoragePaths,
    get_completion_client,
)
from presales_assistant.assessment.documents import try_decode_utf8
from presales_assistant.assessment.estimation import reference_baseline
from presales_assistant.assessment.llm import clean_response, parse_json_response
from presales_assistant.assessment.models import ItemOrigin
from presales_assistant.assessment.stages import (
    normalize_estimate,
    parse_analyzed_items,
    parse_generated_items,
    resolve_estimation_columns,
)


def _job(tmp_path, content=b"Plain scope text", mime="text/plain") -> AssessmentJobRecord:
    path = tmp_path / "scope.txt"
    path.write_bytes(content)
    return AssessmentJobRecord(
        id="job-1",
        project_name="Claims Portal",
        template_id="tmpl-1",
        analysis_mode=AnalysisMode.INTERPRETIVE,
        output_language=OutputLanguage.ENGLISH,
        status=JobStatus.PENDING,
        step=1,
        scope_document_path=str(path),
        scope_document_mime_type=mime,
        original_template=TEMPLATE_DATA,
    )


def test_strict_generation_only_toggles_template_items(template):
    data = {
        "items": [
            {"itemId": "1.1"},
            {"itemName": "user registration ui", "isNeeded": "true"},
            {"itemName": "Admin approval dashboard", "category": "New UI"},
        ]
    }
    items = parse_generated_items(data, template, AnalysisMode.STRICT)

    assert [item.item_id for item in items] == ["1.1", "1.2", "2.1"]
    needed = {item.item_id: item.is_needed for item in items}
    assert needed == {"1.1": True, "1.2": False, "2.1": True}
    assert all(item.origin == ItemOrigin.TEMPLATE for item in items)


def test_interpretive_generation_adds_items_to_ai_sections(template):
    data = [
        {"itemId": "1.2", "isNeeded": False},
        {"itemName": "Admin approval dashboard", "itemDetail": "Approve claims", "category": "adjust existing ui"},
        {"itemName": "Audit trail", "sectionName": "project setup", "category": "something else"},
    ]
    items = parse_generated_items(data, template, AnalysisMode.INTERPRETIVE)

    assert len(items) == 5
    added = [item for item in items if item.origin == ItemOrigin.GENERATED]
    assert [item.item_name for item in added] == ["Admin approval dashboard", "Audit trail"]
    assert added[0].item_id.startswith("ai-")
    assert added[0].section_name == "Features"
    assert added[0].category == "Adjust Existing UI"
    assert added[1].section_name == "Project Setup"
    assert added[1].category == "New UI"
    assert not next(item for item in items if item.item_id == "1.2").is_needed


def test_generation_without_ai_section_creates_one():
    from presales_assistant.assessment import ProjectTemplate

    template = ProjectTemplate.from_dict(
        {"id": "t", "templateName": "Bare", "sections": [{"sectionName": "Setup", "type": "Project-Level", "items": []}]}
    )
    items = parse_generated_items([{"itemName": "Reporting"}], template, AnalysisMode.INTERPRETIVE)
    assert items[0].section_name == "AI-Generated"


@pytest.mark.parametrize(
    "data",
    [
        {"result": []},
        "just a string",
        [1, 2, 3],
        [{"itemDetail": "no id or name"}],
    ],
)
def test_generation_rejects_unexpected_shapes(template, data):
    with pytest.raises(StageError) as exc_info:
        parse_generated_items(data, template, AnalysisMode.INTERPRETIVE, raw="raw text")
    assert exc_info.value.raw_response == "raw text"
    assert "Raw response:\nraw text" in exc_info.value.describe()


def test_analyzed_items_match_ids_case_insensitively():
    items = [
        GeneratedItem("ai-ABC", "Features", "Dashboard", "", "New UI"),
        GeneratedItem("1.1", "Setup", "System Setup", "", "New Backgrounder", is_needed=False),
    ]
    data = {"items": [{"itemId": "AI-abc", "isNeeded": True, "estimates": {"FE": 3}}, {"itemId": "zzz"}, "junk"]}
    analyzed = parse_analyzed_items(data, items)
    assert len(analyzed) == 1
    assert analyzed[0].item_id == "ai-ABC"
    assert analyzed[0].estimates == {"FE": 3}

    with pytest.raises(StageError):
        parse_analyzed_items([{"itemId": "ai-ABC"}], items)
    with pytest.raises(StageError):
        parse_analyzed_items({"items": [{"itemId": "zzz"}]}, items)


def test_estimate_normalisation_and_column_fallback():
    assert normalize_estimate(3.14159) == 3.14
    assert normalize_estimate("2.5") == 2.5
    assert normalize_estimate(float("nan")) is None
    assert normalize_estimate(float("inf")) is None
    assert normalize_estimate(-1) is None
    assert normalize_estimate(True) is None
    assert normalize_estimate("lots") is None

    items = parse_analyzed_items(
        {"items": [{"itemId": "1.1", "estimates": {"Dev": 1, "QA": 2}}, {"itemId": "1.2", "estimates": {"dev": 3}}]},
        [GeneratedItem("1.1", "S", "A", "", "New UI"), GeneratedItem("1.2", "S", "B", "", "New UI")],
    )
    assert resolve_estimation_columns(["Requirement", " "], items) == ["Requirement"]
    assert resolve_estimation_columns([], items) == ["Dev", "QA"]
    assert resolve_estimation_columns([], []) == ["EffortHours"]


def test_generation_stage_repairs_invalid_json(tmp_path):
    repaired = json.dumps({"items": [{"itemId": "1.1"}]})
    client = ScriptedCompletionClient(generation=["{items: [oops"], repair=[repaired])
    storage = LocalDocumentStorage(StoragePaths(tmp_path / "data"))
    stage = GenerationStage(client, ScopeDocumentLoader(storage), repair_invalid_json=True)

    outcome = asyncio.run(stage.run(_job(tmp_path)))

    assert outcome.raw_response == "{items: [oops"
    assert outcome.repaired_response == repaired
    assert [item["item_id"] for item in outcome.payload if item["is_needed"]] == ["1.1"]
    assert "{items: [oops" in client.prompts["repair"][0]


def test_generation_stage_reports_missing_scope_document(tmp_path):
    client = ScriptedCompletionClient()
    storage = LocalDocumentStorage(StoragePaths(tmp_path / "data"))
    stage = GenerationStage(client, ScopeDocumentLoader(storage))
    job = _job(tmp_path)
    Path(job.scope_document_path).unlink()

    with pytest.raises(StageError, match="Unable to read scope document"):
        asyncio.run(stage.run(job))
    assert client.prompts["generation"] == []


class UpperCaseConverter(DocumentConverter):
    def __init__(self):
        self.calls = 0

    def convert(self, path: Path) -> str:
        self.calls += 1
        return f"# CONVERTED {path.name}"


def test_scope_loader_decodes_converts_and_falls_back(tmp_path):
    storage = LocalDocumentStorage(StoragePaths(tmp_path / "data"))
    converter = UpperCaseConverter()
    loader = ScopeDocumentLoader(storage, converter)

    text_path = storage.save_scope_document("job-text", "scope.md", "Héllo scope".encode("utf-8"))
    assert loader.load_text("job-text", str(text_path), "text/markdown") == "Héllo scope"

    binary = bytes(range(256)) * 4
    pdf_path = storage.save_scope_document("job-pdf", "scope.pdf", binary)
    assert loader.load_text("job-pdf", str(pdf_path), "application/pdf") == "# CONVERTED original.pdf"
    assert loader.load_text("job-pdf", str(pdf_path), "application/pdf") == "# CONVERTED original.pdf"
    assert converter.calls == 1

    blob_path = storage.save_scope_document("job-bin", "scope.bin", binary)
    note = loader.load_text("job-bin", str(blob_path), "application/octet-stream")
    assert note.startswith("[Scope document: original.bin (application/octet-stream), 1024 bytes.")
    assert converter.calls == 1


def test_try_decode_utf8_rejects_control_heavy_text():
    assert try_decode_utf8(b"") == ""
    assert try_decode_utf8(b"line one\nline two\ttab") == "line one\nline two\ttab"
    assert try_decode_utf8(b"\xff\xfe\x00") is None
    assert try_decode_utf8(b"\x00\x01\x02\x03\x04\x05 text") is None


def test_clean_response_strips_code_fences():
    assert clean_response('```json\n{"items": []}\n```') == '{"items": []}'
    assert clean_response("  [1]  ") == "[1]"
    assert clean_response(None) == ""
    assert parse_json_response('```\n{"a": 1}\n```') == {"a": 1}
    with pytest.raises(json.JSONDecodeError):
        parse_json_response("not json")


def test_completion_client_factory():
    assert isinstance(get_completion_client("gemini-2.5-flash"), GeminiCompletionClient)
    assert isinstance(get_completion_client("claude-sonnet-4-5"), AnthropicCompletionClient)
    with pytest.raises(ConfigurationError):
        get_completion_client("gpt-4o")


def test_missing_api_key_is_a_completion_error(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    client = AnthropicCompletionClient()
    with pytest.raises(CompletionError):
        asyncio.run(client.complete("hello"))


def test_estimation_policy_clamps_rounds_and_shrinks():
    policy = EstimationPolicy()
    assert policy.apply(0) == 0.0
    assert policy.apply(0.2) == 1.0
    assert policy.apply(120) == 80.0
    assert policy.apply(3.2) == 3.0
    assert policy.apply(3.25) == 3.5
    # Pulled to 90% of the reference baseline, never raised toward it.
    assert policy.apply(20, baseline=10) == 9.0
    assert policy.apply(5, baseline=10) == 5.0
    assert policy.apply(5, baseline=0) == 5.0

    coarse = EstimationPolicy(round_to_nearest_hours=2, hard_max_per_item_hours=40)
    assert coarse.apply(5) == 6.0
    assert coarse.apply(55) == 40.0

    with pytest.raises(ConfigurationError):
        EstimationPolicy(hard_min_per_item_hours=10, hard_max_per_item_hours=5)


REFERENCES = [
    {
        "sections": [
            {
                "section_name": "Setup",
                "items": [
                    {"item_id": "1.1", "category": "New UI", "estimates": {"BE": 8, "FE": 0}},
                    {"item_id": "9.9", "category": "new ui", "estimates": {"be": 2}},
                ],
            }
        ]
    },
    {"sections": [{"section_name": "Setup", "items": [{"item_id": "1.1", "category": "New UI", "estimates": {"BE": 12}}]}]},
]


def test_reference_baseline_prefers_same_item_then_category():
    assert reference_baseline(REFERENCES, "1.1", "New UI", "BE") == pytest.approx(96 ** 0.5)
    assert reference_baseline(REFERENCES, "5.5", "New UI", "BE") == pytest.approx(192 ** (1 / 3))
    assert reference_baseline(REFERENCES, "1.1", "New UI", "FE") is None
    assert reference_baseline(REFERENCES, "5.5", "New Interface", "BE") is None
    assert reference_baseline([], "1.1", "New UI", "BE") is None


def test_estimation_stage_applies_policy_against_references(tmp_path):
    response = json.dumps(
        {"items": [{"itemId": "1.1", "isNeeded": True, "estimates": {"Requirement": 0.3, "BE": 20, "FE": 0}}]}
    )
    client = ScriptedCompletionClient(estimation=[response])
    storage = LocalDocumentStorage(StoragePaths(tmp_path / "data"))
    stage = EstimationStage(client, ScopeDocumentLoader(storage), policy=EstimationPolicy())

    job = _job(tmp_path)
    job.generated_items = [
        GeneratedItem("1.1", "Project Setup", "System Setup", "", "New Backgrounder").to_dict(),
        GeneratedItem("1.2", "Project Setup", "CI/CD Pipeline", "", "New Backgrounder", is_needed=False).to_dict(),
    ]
    job.reference_assessments = [
        {"sections": [{"section_name": "Setup", "items": [{"item_id": "1.1", "category": "New Backgrounder", "estimates": {"BE": 10}}]}]}
    ]

    outcome = asyncio.run(stage.run(job))

    items = {item["item_id"]: item for section in outcome.payload["sections"] for item in section["items"]}
    assert items["1.1"]["estimates"] == {"Requirement": 1.0, "BE": 9.0, "FE": 0.0}
    assert items["1.1"]["total_hours"] == 10.0
    assert items["1.2"]["total_hours"] == 0.0
    assert outcome.payload["total_hours"] == 10.0
    assert outcome.raw_response == response
