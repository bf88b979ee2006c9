"""Scan lifecycle: explicit transition table from (status, event) to the next status.

queued -> processing -> (module_failed <-> processing) -> generating_report -> done.
Any non-terminal status may fail. Terminal scans can only be reset for a re-run.
"""

from typing import Literal

from aegis.core.errors import InvalidTransitionError
from aegis.schemas.scan import TERMINAL_STATUSES, ScanStatus

ScanEvent = Literal["reset", "start", "task_failed", "task_resumed", "begin_report", "complete", "fail"]

_TRANSITIONS: dict[tuple[ScanStatus, str], ScanStatus] = {
    (ScanStatus.QUEUED, "start"): ScanStatus.PROCESSING,
    (ScanStatus.PROCESSING, "task_failed"): ScanStatus.MODULE_FAILED,
    (ScanStatus.MODULE_FAILED, "task_failed"): ScanStatus.MODULE_FAILED,
    (ScanStatus.MODULE_FAILED, "task_resumed"): ScanStatus.PROCESSING,
    (ScanStatus.PROCESSING, "begin_report"): ScanStatus.GENERATING_REPORT,
    (ScanStatus.GENERATING_REPORT, "complete"): ScanStatus.DONE,
}


def apply(status: ScanStatus | str, event: ScanEvent) -> ScanStatus:
    """Return the status after event, or raise InvalidTransitionError."""
    current = ScanStatus(status)
    if event == "reset":
        # A fresh record and a finished one can both be (re)queued; an in-flight scan cannot.
        if current is ScanStatus.QUEUED or current in TERMINAL_STATUSES:
            return ScanStatus.QUEUED
        raise InvalidTransitionError(current.value, event)
    if event == "fail":
        if current in TERMINAL_STATUSES:
            raise InvalidTransitionError(current.value, event)
        return ScanStatus.FAILED
    nxt = _TRANSITIONS.get((current, event))
    if nxt is None:
        raise InvalidTransitionError(current.value, event)
    return nxt


def is_terminal(status: ScanStatus | str) -> bool:
    return ScanStatus(status) in TERMINAL_STATUSES
