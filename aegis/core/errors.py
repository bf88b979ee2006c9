"""Error taxonomy shared by the orchestrator, evidence store and external collaborators.

Task-level errors are caught at the orchestrator's task loop; only critical-task,
zero-evidence and data-integrity errors drive a scan to ``failed``. External
service errors always degrade (the caller continues with whatever it has).
"""


class AegisError(Exception):
    """Base for all domain errors; carries a human-readable message and optional cause."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class TaskExecutionError(AegisError):
    """A scanning task raised unexpectedly. Recoverable unless the task is critical."""

    label = "Task"

    def __init__(self, task_name: str, cause: Exception | None = None) -> None:
        self.task_name = task_name
        detail = str(cause) if cause is not None and str(cause) else type(cause).__name__
        super().__init__(f"{self.label} {task_name} failed: {detail}", cause=cause)


class CriticalTaskError(TaskExecutionError):
    """A task in the critical set failed; the scan is aborted."""

    label = "Critical task"


class ZeroEvidenceError(AegisError):
    """Every task completed but together they reported no findings."""


class ExternalServiceError(AegisError):
    """A vulnerability source, the queue or another remote collaborator is unreachable."""

    def __init__(self, service: str, message: str, cause: Exception | None = None) -> None:
        self.service = service
        super().__init__(f"{service}: {message}", cause=cause)


class DataIntegrityError(AegisError):
    """A write would break a referential invariant (e.g. finding without artifact)."""


class InvalidTransitionError(AegisError):
    """A scan status transition that the lifecycle does not allow."""

    def __init__(self, status: str, event: str) -> None:
        self.status = status
        self.event = event
        super().__init__(f"Event {event!r} is not allowed in status {status!r}")
