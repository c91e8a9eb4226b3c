"""Failure taxonomy for pipeline runs.

Fatal errors derive from ``PipelineError`` and abort the remaining stages of
a run.  Warnings derive from ``PipelineWarning``; they are collected into the
run report and never change the exit code.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """A fatal stage failure.

    Parameters
    ----------
    message:
        Human-readable summary.
    stage_id:
        The stage that failed, when known.
    diagnostics:
        Last known output of the affected stage (build log tail, container
        logs, runtime stderr).
    """

    def __init__(
        self, message: str, *, stage_id: str = "", diagnostics: str = ""
    ) -> None:
        super().__init__(message)
        self.stage_id = stage_id
        self.diagnostics = diagnostics


class BuildFailure(PipelineError):
    """The source tree did not compile into exactly one usable Artifact."""


class ImageFailure(PipelineError):
    """Artifact selection was ambiguous or empty, or the image build failed."""


class DeployFailure(PipelineError):
    """The Instance could not be (re)started: missing image, port conflict, crash."""


class StageExecutionError(PipelineError):
    """An unexpected exception escaped a stage's ``execute()``."""


class PipelineAborted(PipelineError):
    """The operator asked the run to stop; raised before the next stage starts."""


class PipelineBusyError(RuntimeError):
    """Another run already holds the lock for this Instance name."""


class PipelineWarning(Exception):
    """A non-fatal problem.  Collected, reported, never propagated out of a run."""

    def __init__(self, message: str, *, stage_id: str = "") -> None:
        super().__init__(message)
        self.stage_id = stage_id


class VerifyWarning(PipelineWarning):
    """The post-deploy probe failed; the run is a degraded success."""


class CleanupWarning(PipelineWarning):
    """Reclaiming an image or artifact failed."""


def diagnostic_tail(output: str, lines: int = 40) -> str:
    """Keep the last *lines* lines of captured output for a failure report."""
    return "\n".join(output.rstrip().splitlines()[-lines:])


def captured_text(*streams: str | bytes | None) -> str:
    """Join captured process output.

    ``TimeoutExpired`` carries whatever was read before the kill as bytes,
    even when the process was started with ``text=True``.
    """
    parts = []
    for stream in streams:
        if isinstance(stream, bytes):
            parts.append(stream.decode("utf-8", errors="replace"))
        elif stream:
            parts.append(stream)
    return "".join(parts)
