"""Failure classes recorded during a load run."""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    USER_PROVISIONING = 1
    NAMESPACE_READINESS = 2
    REGISTRY_SECRET = 3
    APPLICATION_CREATION = 4
    GITOPS_REPO = 5
    COMPONENT_CREATION = 6
    COMPONENT_NAME_MISMATCH = 7
    PIPELINE_FAILED = 8
    PIPELINE_TIMEOUT = 9


# Stage whose failure counter each code is charged to.
USER_STAGE_CODES = frozenset({ErrorCode.USER_PROVISIONING, ErrorCode.NAMESPACE_READINESS})
RESOURCE_STAGE_CODES = frozenset(
    {
        ErrorCode.REGISTRY_SECRET,
        ErrorCode.APPLICATION_CREATION,
        ErrorCode.GITOPS_REPO,
        ErrorCode.COMPONENT_CREATION,
        ErrorCode.COMPONENT_NAME_MISMATCH,
    }
)
PIPELINE_STAGE_CODES = frozenset({ErrorCode.PIPELINE_FAILED, ErrorCode.PIPELINE_TIMEOUT})

STAGE_CODES = {
    "users": USER_STAGE_CODES,
    "resources": RESOURCE_STAGE_CODES,
    "pipelines": PIPELINE_STAGE_CODES,
}


class PollTimeoutError(TimeoutError):
    """Raised when a polled condition did not hold before its deadline."""

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        label = description or "condition"
        super().__init__(f"timed out after {timeout:g}s waiting for {label}")
