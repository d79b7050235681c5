"""
Domain errors for the journal dual-write path.

Each error carries a machine-readable code and the HTTP status the API maps
it to. Only InvalidArgument, ProjectNotFound and fatal ReplicaWriteFailed ever
reach a caller; AuthoritativeUnavailable is always absorbed by the coordinator.
"""

from typing import Optional


class DualWriteError(Exception):
    """Base class for dual-write errors."""
    code = "dualwrite_error"
    status = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidArgument(DualWriteError):
    """Missing, empty or unknown input field. No store has been touched."""
    code = "invalid_argument"
    status = 400


class ProjectNotFound(DualWriteError):
    """Local project id does not resolve. No store has been touched."""
    code = "project_not_found"
    status = 404

    def __init__(self, local_id: str):
        super().__init__(f"Project {local_id} not found")
        self.local_id = local_id


class AuthoritativeUnavailable(DualWriteError):
    """
    The authoritative store call failed for any reason.

    Timeouts, rejections and rate limits all map here. The coordinator logs
    it and degrades to replica-only; it is never re-raised.
    """
    code = "authoritative_unavailable"
    status = 502

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class ReplicaWriteFailed(DualWriteError):
    """
    The replica write failed.

    fatal=True means the replica was the only persistence attempted for this
    write and the caller must see the failure.
    """
    code = "replica_write_failed"
    status = 503

    def __init__(self, record_id: Optional[str], cause: BaseException, fatal: bool = True):
        super().__init__(f"Replica write failed for {record_id}: {cause}")
        self.record_id = record_id
        self.cause = cause
        self.fatal = fatal
