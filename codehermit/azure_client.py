"""Azure DevOps pull request lookup over the REST API."""

from __future__ import annotations

import base64
import logging
import time
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from codehermit.errors import (
    AuthError,
    AzureApiError,
    AzureRateLimitError,
    ConfigError,
    NotFoundError,
)
from codehermit.schema import PullRequestDetails, PullRequestPayload

logger = logging.getLogger(__name__)

AZURE_API_VERSION = "7.0"
AZURE_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
PAT_RENEWAL_URL = "https://dev.azure.com/_usersSettings/tokens"
UNAUTHORIZED_MESSAGE = (
    "Azure DevOps returned Unauthorized. Check that AZURE_PAT (or AZURE_DEVOPS_PAT) in .env "
    "is correct, not expired, and has at least Code (Read) scope. "
    f"Create or renew a PAT at: {PAT_RENEWAL_URL}"
)
MISSING_CONFIG_MESSAGE = (
    "Missing Azure DevOps config. Set AZURE_ORG_URL (or AZURE_DEVOPS_ORG), "
    "AZURE_PROJECT (or AZURE_DEVOPS_PROJECT), and AZURE_PAT (or AZURE_DEVOPS_PAT) in .env."
)


def _basic_auth_header(pat: str) -> str:
    """Encode a PAT as a basic-auth header value with an empty user name."""
    encoded = base64.b64encode(f":{pat.strip()}".encode()).decode("ascii")
    return f"Basic {encoded}"


def build_azure_client(
    *,
    org_url: str | None,
    pat: str | None,
    timeout_seconds: float | None = None,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated client rooted at the organization URL."""
    if not org_url or not pat:
        raise ConfigError(MISSING_CONFIG_MESSAGE)
    headers = {
        "Accept": "application/json",
        "Authorization": _basic_auth_header(pat),
        "Content-Type": "application/json",
    }
    return httpx.Client(
        base_url=org_url.rstrip("/") + "/",
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    time.sleep(seconds)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success Azure DevOps response."""
    status_code = response.status_code
    if status_code in {401, 203}:
        # 203 is the sign-in page Azure DevOps serves for a rejected PAT.
        raise AuthError(UNAUTHORIZED_MESSAGE)
    if status_code == 404:
        raise NotFoundError(f"Pull request not found at '{endpoint}'. Check the PR id and project.")
    message = (
        f"Failed to fetch pull request: Azure DevOps returned status {status_code} "
        f"({response.reason_phrase}) for '{endpoint}'."
    )
    if status_code == 429:
        raise AzureRateLimitError(message, status_code=status_code, endpoint=endpoint)
    raise AzureApiError(message, status_code=status_code, endpoint=endpoint)


def _request_with_retries(
    client: httpx.Client,
    endpoint: str,
    *,
    params: dict[str, str] | None = None,
    max_attempts: int = AZURE_MAX_RETRIES,
) -> httpx.Response:
    """Perform a GET request with retry handling for 429/5xx responses."""
    for attempt_number in range(1, max_attempts + 1):
        logger.debug("GET %s (attempt %d)", endpoint, attempt_number)
        response = client.get(endpoint, params=params)
        if response.status_code < 400 and response.status_code != 203:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < max_attempts
        if not should_retry:
            _raise_http_error(response, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


def pull_request_endpoint(project: str, pr_id: int) -> str:
    """Return the project-scoped endpoint path for one pull request."""
    return f"{quote(project, safe='')}/_apis/git/pullrequests/{pr_id}"


def fetch_pull_request_details(
    *,
    client: httpx.Client,
    project: str,
    pr_id: int,
) -> PullRequestDetails:
    """Fetch a pull request and return its repository and branch names."""
    if pr_id <= 0:
        raise NotFoundError(f"Invalid PR id '{pr_id}'. Expected a positive integer.")
    endpoint = pull_request_endpoint(project, pr_id)
    response = _request_with_retries(client, endpoint, params={"api-version": AZURE_API_VERSION})
    try:
        payload = PullRequestPayload.model_validate(response.json())
    except (ValueError, ValidationError) as error:
        raise AzureApiError(
            f"Unexpected pull request payload from '{endpoint}'.",
            status_code=response.status_code,
            endpoint=endpoint,
        ) from error
    return payload.to_details()
