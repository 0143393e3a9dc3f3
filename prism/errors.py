from typing import List, Optional

# HTTP-style status categories surfaced to callers
BAD_REQUEST = "bad_request"
NOT_FOUND = "not_found"
INTERNAL = "internal"

STATUS_CODES = {
    BAD_REQUEST: 400,
    NOT_FOUND: 404,
    INTERNAL: 500,
}


class PrismError(Exception):
    """Base class for every failure the orchestrator reports to a caller."""

    status = INTERNAL

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.status]


class InputValidationError(PrismError):
    status = BAD_REQUEST


class NotFoundError(PrismError):
    status = NOT_FOUND


class PathEscapeError(PrismError):
    """A file change points outside the workspace root."""

    status = BAD_REQUEST

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"path escapes workspace: {path!r}")


class FileWriteError(PrismError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"failed to write file {path}: {reason}")


# --- External tools (git, terraform) ---

class ExternalToolError(PrismError):
    """A subprocess exited non-zero. Carries the combined output verbatim."""

    def __init__(self, summary: str, command: Optional[List[str]] = None, output: str = "", returncode: Optional[int] = None):
        self.summary = summary
        self.command = list(command or [])
        self.output = output
        self.returncode = returncode
        message = summary
        if output.strip():
            message = f"{summary}: {output.strip()}"
        super().__init__(message)


class CloneError(ExternalToolError):
    pass


class BranchSyncError(ExternalToolError):
    pass


class PushError(ExternalToolError):
    pass


class CommitError(ExternalToolError):
    pass


class PlanExecutionError(ExternalToolError):
    def __init__(self, stage: str, command: Optional[List[str]] = None, output: str = "", returncode: Optional[int] = None):
        self.stage = stage
        super().__init__(f"terraform {stage} failed", command=command, output=output, returncode=returncode)


class PlanDecodeError(PrismError):
    """`terraform show -json` succeeded but did not print a JSON document."""

    def __init__(self, reason: str, output: str = ""):
        self.output = output
        super().__init__(f"failed to decode plan JSON: {reason}")


# --- Remote services (vault, object store, model, git host) ---

class RemoteServiceError(PrismError):
    """Upstream non-success. Status and message are passed through as received."""

    service = "remote"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.upstream_status = status_code
        self.upstream_message = message
        if status_code is not None:
            super().__init__(f"{self.service} request failed (status code {status_code}): {message}")
        else:
            super().__init__(f"{self.service} request failed: {message}")


class VaultError(RemoteServiceError):
    service = "vault"


class SecretFetchError(VaultError):
    pass


class ObjectStoreError(RemoteServiceError):
    service = "object store"


class ModelError(RemoteServiceError):
    service = "model"


class GitHostError(RemoteServiceError):
    service = "git host"


class SecretInjectionError(PrismError):
    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"failed to set secret env {key!r}: {reason}")
