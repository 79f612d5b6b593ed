"""
Presales assistant core package.

This package currently focuses on the assessment subsystem: a resumable
two-stage pipeline that turns a scope document and a project template into
an estimated assessment. It exposes dataclasses for job records and results,
a data-driven step registry, storage helpers, pluggable completion backends,
and a worker pool that drives jobs through generation and estimation.
"""
