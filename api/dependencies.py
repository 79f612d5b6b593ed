from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, Request

from presales_assistant.assessment import (
    AssessmentRepository,
    AssessmentService,
    AssessmentWorker,
    CompletionClient,
    DocumentConverter,
    EstimationPolicy,
    EstimationStage,
    GenerationStage,
    JobLocks,
    JsonDirectoryTemplateStore,
    KnowledgeBase,
    LocalDocumentStorage,
    ReferenceResultStore,
    ScopeDocumentLoader,
    SqlAlchemyAssessmentRepository,
    StepRegistry,
    StoragePaths,
    SubmissionQueue,
    TemplateStore,
    WhooshKnowledgeBase,
    WorkerPool,
    get_completion_client,
)
from presales_assistant.config import PipelineConfig


@dataclass
class AppComponents:
    config: PipelineConfig
    repository: AssessmentRepository
    registry: StepRegistry
    queue: SubmissionQueue
    storage: LocalDocumentStorage
    templates: TemplateStore
    knowledge_base: Optional[KnowledgeBase]
    service: AssessmentService
    worker: AssessmentWorker
    pool: WorkerPool


def build_estimation_policy(config: PipelineConfig) -> Optional[EstimationPolicy]:
    if not config.estimation_policy_enabled:
        return None
    return EstimationPolicy(
        hard_min_per_item_hours=config.estimation_min_item_hours,
        hard_max_per_item_hours=config.estimation_max_item_hours,
        round_to_nearest_hours=config.estimation_round_to_hours,
        reference_median_cap_multiplier=config.reference_median_cap_multiplier,
        global_shrinkage_to_median=config.reference_shrinkage_to_median,
    )


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    return PipelineConfig.from_env()


def build_components(
    config: PipelineConfig,
    completion_client: Optional[CompletionClient] = None,
    repository: Optional[AssessmentRepository] = None,
    templates: Optional[TemplateStore] = None,
    knowledge_base: Optional[KnowledgeBase] = None,
    converter: Optional[DocumentConverter] = None,
) -> AppComponents:
    """
    Wire the pipeline from config. Any collaborator can be passed in to
    replace the configured one (tests swap in-memory stores and a scripted
    completion client).
    """
    config.storage_root.mkdir(parents=True, exist_ok=True)
    repo = repository or SqlAlchemyAssessmentRepository(config.database_url)
    registry = StepRegistry.load(repo)
    storage = LocalDocumentStorage(StoragePaths(config.storage_root))
    template_store = templates or JsonDirectoryTemplateStore(config.template_dir)
    kb = knowledge_base or WhooshKnowledgeBase(config.knowledge_index_dir)
    client = completion_client or get_completion_client(config.llm_model)
    loader = ScopeDocumentLoader(storage, converter)

    queue = SubmissionQueue()
    locks = JobLocks()
    worker = AssessmentWorker(
        repository=repo,
        registry=registry,
        generation=GenerationStage(client, loader, repair_invalid_json=config.repair_invalid_json),
        estimation=EstimationStage(
            client,
            loader,
            repair_invalid_json=config.repair_invalid_json,
            policy=build_estimation_policy(config),
        ),
        locks=locks,
    )
    pool = WorkerPool(
        worker,
        queue,
        worker_count=config.worker_count,
        store_retry_limit=config.store_retry_limit,
        store_retry_backoff_seconds=config.store_retry_backoff_seconds,
        shutdown_grace_seconds=config.shutdown_grace_seconds,
    )
    service = AssessmentService(
        repository=repo,
        registry=registry,
        queue=queue,
        storage=storage,
        templates=template_store,
        reference_results=ReferenceResultStore(repo),
        knowledge_base=kb,
        locks=locks,
    )
    return AppComponents(
        config=config,
        repository=repo,
        registry=registry,
        queue=queue,
        storage=storage,
        templates=template_store,
        knowledge_base=kb,
        service=service,
        worker=worker,
        pool=pool,
    )


def get_components(request: Request) -> AppComponents:
    return request.app.state.components


def get_service(request: Request) -> AssessmentService:
    return get_components(request).service


def get_templates(request: Request) -> TemplateStore:
    return get_components(request).templates


def get_knowledge_base(request: Request) -> KnowledgeBase:
    knowledge_base = get_components(request).knowledge_base
    if knowledge_base is None:
        raise HTTPException(status_code=503, detail="No knowledge base is configured")
    return knowledge_base
