import pytest

from presales_assistant.assessment import (
    DEFAULT_STEP_DEFINITIONS,
    InMemoryAssessmentRepository,
    JobStatus,
    StepRegistry,
    UnknownStatusError,
)
from presales_assistant.assessment.steps import ACTION_DELETE, ACTION_RESUME

from test_repository import _record


def test_default_ordinals_follow_the_pipeline():
    registry = StepRegistry.default()
    assert [registry.ordinal(status) for status in JobStatus] == list(range(1, 9))
    assert registry.ordinal("EstimationComplete") == 6
    assert JobStatus.COMPLETE in registry and "Draft" not in registry


def test_unknown_status_is_a_configuration_error():
    registry = StepRegistry.default()
    with pytest.raises(UnknownStatusError) as exc_info:
        registry.get("Draft")
    assert exc_info.value.status == "Draft"


def test_load_requires_every_status():
    partial = [d for d in DEFAULT_STEP_DEFINITIONS if d.status != JobStatus.COMPLETE.value]
    with pytest.raises(UnknownStatusError):
        StepRegistry.load(InMemoryAssessmentRepository(), seed=partial)


def test_terminal_and_resumable_statuses():
    registry = StepRegistry.default()
    assert registry.non_terminal_statuses() == [
        JobStatus.PENDING,
        JobStatus.GENERATION_IN_PROGRESS,
        JobStatus.GENERATION_COMPLETE,
        JobStatus.ESTIMATION_IN_PROGRESS,
        JobStatus.ESTIMATION_COMPLETE,
    ]
    assert registry.is_resumable(JobStatus.FAILED_GENERATION)
    assert registry.is_resumable(JobStatus.FAILED_ESTIMATION)
    assert not registry.is_resumable(JobStatus.COMPLETE)
    assert registry.is_terminal(JobStatus.COMPLETE)


def test_describe_shows_error_and_actions_only_on_failure():
    registry = StepRegistry.default()

    running = _record("job-1", JobStatus.ESTIMATION_IN_PROGRESS)
    running.last_error = "left over"
    view = registry.describe(running)
    assert view.step == 5 and view.progress_percent == 60
    assert view.label == "Estimating delivery effort"
    assert view.last_error is None and view.actions == []

    failed = _record("job-2", JobStatus.FAILED_ESTIMATION)
    failed.last_error = "Estimation response is not valid JSON"
    view = registry.describe(failed)
    assert view.status == "FailedEstimation"
    assert view.last_error == "Estimation response is not valid JSON"
    assert view.actions == [ACTION_RESUME, ACTION_DELETE]


def test_apply_keeps_step_in_sync():
    registry = StepRegistry.default()
    job = _record("job-1")
    for status in JobStatus:
        registry.apply(job, status)
        assert job.status == status
        assert job.step == registry.get(status).step
