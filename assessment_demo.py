"""
Example: run the full assessment pipeline on a local scope document using SQLite + Whoosh
and a configured completion backend (Gemini or Claude).

Usage:
    python3 assessment_demo.py --scope ./scope.md --template ./template.json --project "Claims Portal"
"""

import argparse
import asyncio
import json
from pathlib import Path

from presales_assistant.assessment import (
    AssessmentService,
    AssessmentWorker,
    EstimationPolicy,
    EstimationStage,
    GenerationStage,
    InMemoryTemplateStore,
    JobLocks,
    LocalDocumentStorage,
    ProjectTemplate,
    ReferenceDocument,
    ScopeDocumentLoader,
    ScopeDocumentUpload,
    SqlAlchemyAssessmentRepository,
    StepRegistry,
    StoragePaths,
    SubmissionQueue,
    WhooshKnowledgeBase,
    get_completion_client,
)
from presales_assistant.assessment.storage import guess_mime_type
from presales_assistant.config import configure_logging


async def run(args) -> None:
    template = ProjectTemplate.from_dict(json.loads(args.template.read_text(encoding="utf-8")))
    if not template.id:
        template.id = args.template.stem

    repo = SqlAlchemyAssessmentRepository(f"sqlite+pysqlite:///{args.db}")
    registry = StepRegistry.load(repo)
    storage = LocalDocumentStorage(StoragePaths(args.storage_root))
    knowledge_base = WhooshKnowledgeBase(args.whoosh_dir)
    if args.knowledge:
        entries = json.loads(args.knowledge.read_text(encoding="utf-8"))
        knowledge_base.index_documents(ReferenceDocument.from_dict(entry) for entry in entries)

    client = get_completion_client(args.model)
    loader = ScopeDocumentLoader(storage)
    queue = SubmissionQueue()
    locks = JobLocks()
    worker = AssessmentWorker(
        repository=repo,
        registry=registry,
        generation=GenerationStage(client, loader, repair_invalid_json=args.repair_json),
        estimation=EstimationStage(
            client,
            loader,
            repair_invalid_json=args.repair_json,
            policy=None if args.raw_estimates else EstimationPolicy(),
        ),
        locks=locks,
    )
    service = AssessmentService(
        repository=repo,
        registry=registry,
        queue=queue,
        storage=storage,
        templates=InMemoryTemplateStore([template]),
        knowledge_base=knowledge_base,
        locks=locks,
    )

    upload = ScopeDocumentUpload(
        filename=args.scope.name,
        content=args.scope.read_bytes(),
        mime_type=guess_mime_type(args.scope.name),
    )
    job = await service.submit_job(
        template_id=template.id,
        project_name=args.project,
        scope_document=upload,
        analysis_mode=args.mode,
        output_language=args.language,
        reference_document_sources=args.reference_source,
    )
    print(f"Starting assessment job {job.id} for {args.scope}")
    await worker.run_job(job.id)

    status = await service.get_status(job.id)
    print(f"Job finished with status={status.status} ({status.label}), error={status.last_error}")
    if status.status == "Complete":
        result = await service.get_final_result(job.id)
        print(f"{result.item_count} items, {result.total_hours:.2f} total hours")
        if args.output:
            args.output.write_text(json.dumps(result.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
            print(f"Result written to {args.output}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--scope", required=True, type=Path, help="Path to the scope document")
    parser.add_argument("--template", required=True, type=Path, help="Path to a project template JSON file")
    parser.add_argument("--project", required=True, help="Project name")
    parser.add_argument("--mode", default="Interpretive", choices=["Interpretive", "Strict"], help="Analysis mode")
    parser.add_argument("--language", default="English", choices=["English", "Indonesian"], help="Output language")
    parser.add_argument("--model", default="gemini-2.5-flash", help="Completion model id (gemini-* or claude-*)")
    parser.add_argument("--db", default=Path("./data/presales_assistant.db"), type=Path, help="SQLite DB path")
    parser.add_argument("--storage-root", default=Path("./data"), type=Path, help="Storage root for scope documents")
    parser.add_argument("--whoosh-dir", default=Path("./data/whoosh"), type=Path, help="Whoosh index directory")
    parser.add_argument("--knowledge", type=Path, default=None, help="JSON list of {source, summary} to index first")
    parser.add_argument("--reference-source", action="append", default=[], help="Knowledge source to attach")
    parser.add_argument("--repair-json", action="store_true", help="Ask the model to repair invalid JSON once")
    parser.add_argument("--raw-estimates", action="store_true", help="Keep model estimates without clamping or rounding")
    parser.add_argument("--output", type=Path, default=None, help="Write the final result JSON here")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    if not args.scope.exists():
        raise FileNotFoundError(f"Scope document not found: {args.scope}")
    if not args.template.exists():
        raise FileNotFoundError(f"Template not found: {args.template}")
    args.db.parent.mkdir(parents=True, exist_ok=True)

    configure_logging(args.log_level)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
