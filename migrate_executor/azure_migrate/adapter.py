"""
Azure Management Adapter

Thin, stateless gateway for Azure Resource Manager calls. Every call to
the Site Recovery, Migrate, OffAzure and Storage APIs goes through here:
- bearer token acquisition via azure-identity
- typed errors for auth, not-found, filter and remote failures
- 202 Accepted surfaced as an AcceptedOperation handle

No retries are performed at this layer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import requests
from azure.core.exceptions import AzureError

from migrate_executor import config
from migrate_executor.utils import _safe_json_parse
from .errors import AuthError, NotFoundError, RemoteApiError, TransientQueryError, parse_arm_error

logger = logging.getLogger(__name__)

FILTER_ERROR_MARKER = "InvalidFilterQueryStringToParse"


@dataclass
class AcceptedOperation:
    """Handle for a long-running ARM operation (HTTP 202)"""
    status_code: int
    location: Optional[str] = None          # Azure-AsyncOperation, else Location
    retry_after: Optional[int] = None       # seconds
    body: Optional[Dict[str, Any]] = None

    @property
    def job_name(self) -> Optional[str]:
        """ASR returns the replication job as the last segment of the operation URL."""
        if not self.location:
            return None
        return self.location.split("?")[0].rstrip("/").split("/")[-1]


class AzureManagementAdapter:
    """
    Adapter that issues authenticated HTTPS calls against Azure Resource Manager.

    Paths are ARM resource paths with their api-version already appended
    (see endpoints.py); the adapter prefixes the management base URL.
    """

    def __init__(self, credential=None, base_url: str = None, session: requests.Session = None,
                 timeout=None):
        """
        Initialize the adapter.

        Args:
            credential: azure-identity TokenCredential (e.g. ClientSecretCredential);
                        None means Azure is not configured
            base_url: Management endpoint, defaults to config.AZURE_MGMT_URL
            session: Optional requests.Session for connection reuse
            timeout: Tuple of (connect_timeout, read_timeout)
        """
        self.credential = credential
        self.base_url = (base_url or config.AZURE_MGMT_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or config.AZURE_REQUEST_TIMEOUT

    def get_access_token(self) -> str:
        if self.credential is None:
            raise AuthError()
        try:
            return self.credential.get_token(config.AZURE_MGMT_SCOPE).token
        except AzureError as e:
            logger.error(f"Failed to get Azure access token: {e}")
            raise AuthError(f"Failed to get Azure access token: {e}") from e

    def call(self, method: str, path: str, body: Optional[Dict] = None) -> Union[Dict[str, Any], AcceptedOperation, None]:
        """
        Issue a management call, folding empty-result errors into None.

        Returns:
            Parsed JSON dict, AcceptedOperation for 202, or None for
            204/empty bodies, 404s and rejected filters

        Raises:
            AuthError: No token could be obtained
            RemoteApiError: Any other non-2xx response or transport failure
        """
        try:
            return self.request(method, path, body)
        except NotFoundError:
            logger.debug(f"Resource not found (404): {path.split('?')[0].split('/')[-1]}")
            return None
        except TransientQueryError:
            logger.warning("Azure API filter error - returning empty result")
            return None

    def request(self, method: str, path: str, body: Optional[Dict] = None) -> Union[Dict[str, Any], AcceptedOperation, None]:
        """Same as call() but raises NotFoundError / TransientQueryError instead of returning None."""
        token = self.get_access_token()
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            response = self.session.request(
                method.upper(),
                url,
                headers=headers,
                json=body,
                timeout=self.timeout,
                verify=True,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Azure request failed: {method} {path.split('?')[0]}: {e}")
            raise RemoteApiError(None, str(e), error_code="TRANSPORT") from e

        status_code = response.status_code

        if status_code == 404:
            raise NotFoundError(path)

        if not response.ok:
            error_text = response.text or ""
            if status_code == 400 and FILTER_ERROR_MARKER in error_text:
                raise TransientQueryError(path, error_text)
            error_info = parse_arm_error(_safe_json_parse(response))
            logger.error(f"Azure API error: {status_code} - {error_text[:500]}")
            raise RemoteApiError(status_code, error_text, error_code=error_info["code"])

        if status_code == 202:
            retry_after = response.headers.get("Retry-After")
            return AcceptedOperation(
                status_code=status_code,
                location=response.headers.get("Azure-AsyncOperation") or response.headers.get("Location"),
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                body=_safe_json_parse(response) if response.text else None,
            )

        if status_code == 204 or not response.text:
            return None

        return _safe_json_parse(response)
