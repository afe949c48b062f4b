"""
Error taxonomy for the job engine.

Provider failures are split into transient (retried by the RetryExecutor) and
permanent (propagated immediately). Everything else is a job-level failure that
the worker records on the JobRecord.
"""

from typing import Dict, List, Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors"""


class ProviderError(OrchestratorError):
    """Failure reported by an external collaborator (text, news, speech, assembly)"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class TransientProviderError(ProviderError):
    """Network or timeout failure; eligible for retry"""


class PermanentProviderError(ProviderError):
    """Non-retryable provider failure"""


class MissingPrerequisiteError(OrchestratorError):
    """A stage needed a context value that an earlier stage did not produce"""

    def __init__(self, key: str, stage: Optional[str] = None):
        where = f" (required by {stage})" if stage else ""
        super().__init__(f"Missing prerequisite '{key}'{where}")
        self.key = key
        self.stage = stage


class ChannelNotFoundError(OrchestratorError):
    def __init__(self, channel_id: int):
        super().__init__(f"Channel {channel_id} not found")
        self.channel_id = channel_id


class ChannelInactiveError(OrchestratorError):
    def __init__(self, channel_id: int):
        super().__init__(f"Channel {channel_id} is not active")
        self.channel_id = channel_id


class JobNotFoundError(OrchestratorError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidJobStateError(OrchestratorError):
    """Operation not allowed for the job's current status"""

    def __init__(self, job_id: int, status: str, expected: str):
        super().__init__(
            f"Job {job_id} is in status {status}; expected {expected}"
        )
        self.job_id = job_id
        self.status = status
        self.expected = expected


class InvalidTransitionError(OrchestratorError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal status transition {current} -> {target}")
        self.current = current
        self.target = target


class JobInterruptedError(OrchestratorError):
    """The process stopped while the job was running and it cannot be picked up again"""

    def __init__(self, job_id: int, status: str):
        super().__init__(f"Job {job_id} was interrupted while {status}")
        self.job_id = job_id
        self.status = status


class FanOutJoinError(OrchestratorError):
    """One or more parallel branches failed; carries every branch failure"""

    def __init__(self, failures: Dict[str, BaseException]):
        names = ", ".join(
            f"{branch}: {type(exc).__name__}: {exc}" for branch, exc in failures.items()
        )
        super().__init__(f"Parallel fan-out failed in {len(failures)} branch(es): {names}")
        self.failures = failures
        if failures:
            self.__cause__ = next(iter(failures.values()))


class StageExecutionFailure(OrchestratorError):
    """Raised by the RetryExecutor once retries are exhausted"""

    def __init__(self, stage: str, cause: BaseException, attempts: int):
        super().__init__(
            f"Stage '{stage}' failed after {attempts} attempt(s): {type(cause).__name__}: {cause}"
        )
        self.stage = stage
        self.cause = cause
        self.attempts = attempts


class QueueClosedError(OrchestratorError):
    """The job queue has been closed for shutdown"""


class QueueCancelledError(OrchestratorError):
    """take() was aborted by the shutdown signal"""


def describe_error(exc: BaseException) -> str:
    """Render an exception and its cause chain for the job's log output"""
    lines: List[str] = []
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        prefix = "Caused by: " if lines else ""
        lines.append(f"{prefix}{type(current).__name__}: {current}")
        if isinstance(current, FanOutJoinError):
            for branch, failure in current.failures.items():
                lines.append(f"  [{branch}] {type(failure).__name__}: {failure}")
            break
        current = current.__cause__ or current.__context__
    return "\n".join(lines)
