from __future__ import annotations

from typing import Optional


class AssessmentError(Exception):
    """Base class for every error raised by the assessment subsystem."""


# Configuration / fatal errors. These abort the operation and are never
# downgraded to a job-level failure.


class ConfigurationError(AssessmentError):
    pass


class UnknownStatusError(ConfigurationError):
    def __init__(self, status: str):
        super().__init__(f"Status '{status}' is not defined in the step registry")
        self.status = status


class QueueClosedError(ConfigurationError):
    pass


# Stage errors. Caught by the worker and recorded on the job as data.


class CompletionError(AssessmentError):
    """The generative collaborator could not produce a response."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} completion failed: {message}")
        self.provider = provider


class StageError(AssessmentError):
    """
    A stage ran but its outcome cannot be committed, typically because the
    collaborator response did not parse into the expected shape. The raw
    response travels with the error so it can be persisted for debugging.
    """

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.raw_response = raw_response

    def describe(self) -> str:
        if not self.raw_response:
            return self.message
        return f"{self.message}\n\nRaw response:\n{self.raw_response}"


# Façade / user errors. Reported synchronously without mutating state.


class JobNotFoundError(AssessmentError):
    def __init__(self, job_id: str):
        super().__init__(f"Assessment job not found: {job_id}")
        self.job_id = job_id


class InvalidJobStateError(AssessmentError):
    pass


class ResultNotReadyError(AssessmentError):
    def __init__(self, job_id: str, status: str):
        super().__init__(f"Assessment job {job_id} has no final result (status: {status})")
        self.job_id = job_id
        self.status = status


class TemplateNotFoundError(AssessmentError):
    def __init__(self, template_id: str):
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id


class InvalidSubmissionError(AssessmentError):
    pass
