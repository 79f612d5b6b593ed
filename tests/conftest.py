import asyncio
import inspect
import logging
from types import SimpleNamespace

import pytest

from presales_assistant.assessment import (
    AssessmentService,
    AssessmentWorker,
    CompletionError,
    EstimationStage,
    GenerationStage,
    InMemoryAssessmentRepository,
    InMemoryTemplateStore,
    JobLocks,
    LocalDocumentStorage,
    ProjectTemplate,
    ScopeDocumentLoader,
    ScopeDocumentUpload,
    StepRegistry,
    StoragePaths,
    SubmissionQueue,
    WorkerPool,
)
from presales_assistant.config import LOG_FORMAT

logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT)

TEMPLATE_DATA = {
    "id": "tmpl-1",
    "templateName": "Web Application",
    "estimationColumns": ["Requirement", "BE", "FE"],
    "sections": [
        {
            "sectionName": "Project Setup",
            "type": "Project-Level",
            "items": [
                {"itemId": "1.1", "itemName": "System Setup", "itemDetail": "Environments and access", "category": "New Backgrounder"},
                {"itemId": "1.2", "itemName": "CI/CD Pipeline", "itemDetail": "Build and deploy automation", "category": "New Backgrounder"},
            ],
        },
        {
            "sectionName": "Features",
            "type": "AI-Generated",
            "items": [
                {"itemId": "2.1", "itemName": "User Registration UI", "itemDetail": "Sign-up form", "category": "New UI"},
            ],
        },
    ],
}

SCOPE_TEXT = b"# Claims portal\n\nCustomers register, submit claims and track their status.\n"


class ScriptedCompletionClient:
    """
    Completion fake that hands out scripted responses per stage. An entry can
    be a string, an exception to raise, or a callable taking the prompt (sync
    or async).
    """

    def __init__(self, generation=(), estimation=(), repair=(), delay: float = 0.0):
        self.scripts = {"generation": list(generation), "estimation": list(estimation), "repair": list(repair)}
        self.prompts = {"generation": [], "estimation": [], "repair": []}
        self.delay = delay

    @staticmethod
    def stage_of(prompt: str) -> str:
        if prompt.startswith("The following text was supposed to be valid JSON"):
            return "repair"
        if "software project estimator" in prompt:
            return "estimation"
        return "generation"

    def queue(self, stage: str, *responses) -> None:
        self.scripts[stage].extend(responses)

    async def complete(self, prompt: str) -> str:
        stage = self.stage_of(prompt)
        self.prompts[stage].append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.scripts[stage]:
            raise CompletionError("Scripted", f"no scripted {stage} response left")
        response = self.scripts[stage].pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(prompt)
            if inspect.isawaitable(response):
                response = await response
        return response


class RecordingRepository(InMemoryAssessmentRepository):
    """In-memory repository that remembers every (status, step) it was asked to write."""

    def __init__(self):
        super().__init__()
        self.writes = []

    def update_job(self, job):
        self.writes.append((job.id, job.status, job.step))
        return super().update_job(job)


def scope_upload(content: bytes = SCOPE_TEXT, filename: str = "scope.md", mime_type: str = "text/markdown"):
    return ScopeDocumentUpload(filename=filename, content=content, mime_type=mime_type)


@pytest.fixture
def template():
    return ProjectTemplate.from_dict(TEMPLATE_DATA)


@pytest.fixture
def build_pipeline(tmp_path, template):
    """
    Returns a factory wiring service, worker and pool around in-memory stores.
    Call it inside the coroutine that uses it so asyncio primitives bind to
    that loop.
    """

    def factory(client, repository=None, knowledge_base=None, converter=None, worker_count=2, **pool_options):
        repo = repository or RecordingRepository()
        registry = StepRegistry.load(repo)
        storage = LocalDocumentStorage(StoragePaths(tmp_path / "data"))
        loader = ScopeDocumentLoader(storage, converter)
        queue = SubmissionQueue()
        locks = JobLocks()
        worker = AssessmentWorker(
            repository=repo,
            registry=registry,
            generation=GenerationStage(client, loader),
            estimation=EstimationStage(client, loader),
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
        pool = WorkerPool(worker, queue, worker_count=worker_count, **pool_options)
        return SimpleNamespace(
            repo=repo,
            registry=registry,
            storage=storage,
            queue=queue,
            locks=locks,
            worker=worker,
            service=service,
            pool=pool,
            client=client,
        )

    return factory
