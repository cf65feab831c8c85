"""
Azure Migrate Error Types

Typed failures raised by the management gateway and the replication
workflows, plus ARM error-envelope parsing for readable messages.
"""

from typing import Any, Iterable, Optional

# ARM error codes worth a friendlier message
ARM_ERROR_HINTS = {
    "AuthorizationFailed": "The service principal lacks permission for this operation.",
    "InvalidAuthenticationToken": "The Azure access token was rejected. Check the service principal credentials.",
    "ResourceGroupNotFound": "The configured resource group does not exist.",
    "SubscriptionNotFound": "The configured subscription does not exist or is not visible to the service principal.",
    "185000": "Run-as account reference is stale. Clear the infrastructure cache and retry.",
}


class MigrateError(Exception):
    """Base exception for Azure Migrate operations"""

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class AuthError(MigrateError):
    """Raised when no valid Azure credential or token can be obtained"""

    def __init__(self, message: str = "Azure not configured or authentication failed"):
        super().__init__(message, error_code="AUTH_FAILED", status_code=401)


class ConfigurationError(MigrateError):
    """Credentials or topology absent; recoverable by re-running discovery"""

    def __init__(self, message: str):
        super().__init__(message, error_code="NOT_CONFIGURED", status_code=412)


class NotFoundError(MigrateError):
    """Remote resource absent (HTTP 404); the gateway turns this into an empty result"""

    def __init__(self, path: str):
        super().__init__(f"Resource not found: {path}", error_code="NOT_FOUND", status_code=404)
        self.path = path


class TransientQueryError(MigrateError):
    """Remote rejected a query filter; the gateway turns this into an empty result"""

    def __init__(self, path: str, body: str = ""):
        super().__init__(f"Azure API filter error for {path}", error_code="InvalidFilterQueryStringToParse",
                         status_code=400)
        self.path = path
        self.body = body


class RemoteApiError(MigrateError):
    """Any other non-2xx response (or transport failure when status_code is None)"""

    def __init__(self, status_code: Optional[int], body: str, error_code: Optional[str] = None,
                 message: Optional[str] = None):
        self.body = body
        super().__init__(message or f"Azure API error: {status_code} - {body}",
                         error_code=error_code, status_code=status_code)


class PreconditionError(MigrateError):
    """Lifecycle operation attempted from an invalid status"""

    def __init__(self, operation: str, current_status: Optional[str], required_statuses: Iterable[str]):
        self.operation = operation
        self.current_status = current_status
        self.required_statuses = list(required_statuses)
        message = (
            f"Cannot {operation}: current status is {current_status}, "
            f"requires one of {', '.join(self.required_statuses)}"
        )
        super().__init__(message, error_code="PRECONDITION_FAILED", status_code=409)


class ItemNotFoundError(LookupError):
    """Local replication item does not exist"""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Replication item {item_id} not found")


def parse_arm_error(body: Any) -> dict:
    """
    Extract code and message from an ARM error envelope.

    Args:
        body: Parsed JSON body ({"error": {"code", "message", "details"}}) or raw text

    Returns:
        dict with keys: code, message, hint
    """
    code = None
    message = ""

    if isinstance(body, dict):
        error_obj = body.get("error") or {}
        if isinstance(error_obj, dict):
            code = error_obj.get("code")
            message = error_obj.get("message", "")
            # ASR nests the useful detail one level down
            details = error_obj.get("details") or []
            if details and isinstance(details, list) and isinstance(details[0], dict):
                code = details[0].get("code") or code
                message = details[0].get("message") or message
    elif body:
        message = str(body)

    return {
        "code": code or "UNKNOWN",
        "message": message or "Unknown error occurred",
        "hint": ARM_ERROR_HINTS.get(code or ""),
    }
