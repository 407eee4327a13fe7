from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None


class BaseAPIException(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_error_response(self, correlation_id: Optional[str] = None) -> ErrorResponse:
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details,
            correlation_id=correlation_id
        )


class GitRequestError(BaseAPIException):
    """Request URL cannot be mapped to a git service and repository.

    Reported as 500 to stay compatible with existing git smart HTTP
    deployments, even though the fault is on the client side.
    """

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code=code, message=message, status_code=500, details=details)


class NoMatchingService(GitRequestError):
    def __init__(self, uri: str = ""):
        super().__init__(
            code="GITB-NO-SERVICE",
            message="No matching service types found",
            details={"uri": uri} if uri else None
        )


class NotAGitRequest(GitRequestError):
    def __init__(self, message: str = "pushed url needs to be in user/project.git format", uri: str = ""):
        super().__init__(
            code="GITB-NOT-GIT",
            message=message,
            details={"uri": uri} if uri else None
        )


class RequestBodyReadFailure(BaseAPIException):
    def __init__(self, message: str = "couldn't read request body", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="GITB-400",
            message=message,
            status_code=400,
            details=details
        )


class PayloadTooLarge(BaseAPIException):
    def __init__(self, limit: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="GITB-413",
            message=f"Request body exceeds {limit} bytes",
            status_code=413,
            details=details
        )


class MalformedNegotiation(BaseAPIException):
    def __init__(self, message: str = "Malformed receive-pack negotiation", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="GITB-BAD-NEGOTIATION",
            message=message,
            status_code=500,
            details=details
        )


class RepositoryNotFound(BaseAPIException):
    def __init__(self, repository: str):
        super().__init__(
            code="GITB-404",
            message=f"Repository not found: {repository}",
            status_code=404,
            details={"repository": repository}
        )


class RepositoryCreationDenied(BaseAPIException):
    def __init__(self, repository: str):
        super().__init__(
            code="GITB-404",
            message=f"Cannot create repository: {repository}",
            status_code=404,
            details={"repository": repository}
        )


class RepositoryInitFailure(BaseAPIException):
    def __init__(self, message: str = "Could not initialize repository", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="GITB-500",
            message=message,
            status_code=500,
            details=details
        )


class CommandExecutionFailure(BaseAPIException):
    # The legacy server answered 304 here, which means "not modified".
    def __init__(self, command: str, message: str, exit_code: Optional[int] = None):
        super().__init__(
            code="GITB-COMMAND",
            message=message,
            status_code=500,
            details={"command": command, "exit_code": exit_code}
        )
        self.command = command
        self.exit_code = exit_code


class InternalServerError(BaseAPIException):
    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code="GITB-500",
            message=message,
            status_code=500,
            details=details
        )


class HookRejected(Exception):
    """Raised by a pre-receive policy to decline a push.

    Not an HTTP error: the pipeline turns it into an ``ng`` status report.
    """

    def __init__(self, reason: str = "pre-receive hook declined"):
        self.reason = reason
        super().__init__(reason)

