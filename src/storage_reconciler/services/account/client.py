"""HTTP client for the account management API."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ... import metrics
from ...constants import (
    DEFAULT_ACCOUNT_API_URL,
    ERR_BAD_REQUEST,
    ERR_UNAUTHORIZED,
    HTTP_TIMEOUT_SECONDS,
    TOKEN_REFRESH_MARGIN_SECONDS,
    USER_AGENT,
)
from ...errors import AccountAPIError, AuthenticationError
from ...utils.errors import sanitize_exception
from .models import (
    CreatedResource,
    Credentials,
    PermissionPayload,
    PermissionRecord,
    ServiceAccountCredentials,
    ServiceAccountPayload,
    ServiceAccountRecord,
    Token,
)

logger = logging.getLogger(__name__)

API_TYPE = "account"

PERMISSIONS_PATH = "/permissions"
SERVICE_ACCOUNTS_PATH = "/service-accounts"
TOKEN_PATH = "/auth/token"


class AccountAPIClient:
    """
    Client for the account API (permissions and service accounts).

    Notes
    - The bearer token is acquired lazily on the first request and reused
      until shortly before it expires.
    - A request refused with HTTP 401 re-authenticates and is sent once more.
    - Other non-2xx responses raise AccountAPIError carrying the API's error code,
      so callers can classify them; nothing is retried here.
    """

    def __init__(
        self,
        account_id: str,
        access_key: str,
        secret: str,
        *,
        base_url: str = DEFAULT_ACCOUNT_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not account_id or not access_key or not secret:
            raise ValueError("account_id, access_key and secret are required")
        self._credentials = Credentials(account_id=account_id, access_key=access_key, secret=secret)
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._token: Optional[Token] = None
        self._token_expires_at: Optional[float] = None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "AccountAPIClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Authentication ---------------
    def authenticate(self) -> Token:
        """
        Exchange the account credentials for a bearer token.

        An empty or undecodable body, or one without a token, is an
        AuthenticationError rather than a half-initialized client.
        """
        try:
            resp = self._send(
                "POST",
                TOKEN_PATH,
                "authenticate",
                json=self._credentials.model_dump(by_alias=True),
                authorized=False,
            )
        except AccountAPIError as exc:
            raise AuthenticationError(exc.code, exc.message, exc.status) from exc
        if not resp.content:
            raise AuthenticationError(ERR_UNAUTHORIZED, "empty authentication response", resp.status_code)
        try:
            token = Token.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise AuthenticationError(
                ERR_UNAUTHORIZED, f"invalid authentication response: {sanitize_exception(exc)}", resp.status_code
            ) from exc
        self._token = token
        self._token_expires_at = _expires_at(token.expiration_sec)
        return token

    def _current_token(self) -> Token:
        if self._token is not None and (
            self._token_expires_at is None or time.monotonic() < self._token_expires_at
        ):
            return self._token
        return self.authenticate()

    # --------------- Permissions ---------------
    def create_permission(self, payload: PermissionPayload) -> str:
        """Create a permission and return its ID."""
        data = self._request("POST", PERMISSIONS_PATH, "create_permission", json=_dump(payload))
        return CreatedResource.model_validate(data).id

    def get_permission(self, permission_id: str) -> PermissionRecord:
        data = self._request("GET", f"{PERMISSIONS_PATH}/{permission_id}", "get_permission")
        return PermissionRecord.model_validate(data)

    def update_permission(self, permission_id: str, payload: PermissionPayload) -> None:
        self._request("PUT", f"{PERMISSIONS_PATH}/{permission_id}", "update_permission", json=_dump(payload))

    def delete_permission(self, permission_id: str) -> None:
        self._request("DELETE", f"{PERMISSIONS_PATH}/{permission_id}", "delete_permission")

    # --------------- Service accounts ---------------
    def create_service_account(self, payload: ServiceAccountPayload) -> ServiceAccountCredentials:
        """Create a service account; the response carries its only copy of the secret."""
        data = self._request("POST", SERVICE_ACCOUNTS_PATH, "create_service_account", json=_dump(payload))
        return ServiceAccountCredentials.model_validate(data)

    def get_service_account(self, service_account_id: str) -> ServiceAccountRecord:
        data = self._request("GET", f"{SERVICE_ACCOUNTS_PATH}/{service_account_id}", "get_service_account")
        return ServiceAccountRecord.model_validate(data)

    def update_service_account(self, service_account_id: str, payload: ServiceAccountPayload) -> None:
        self._request(
            "PUT", f"{SERVICE_ACCOUNTS_PATH}/{service_account_id}", "update_service_account", json=_dump(payload)
        )

    def enable_service_account(self, service_account_id: str) -> None:
        self._request("PUT", f"{SERVICE_ACCOUNTS_PATH}/{service_account_id}/enabled", "enable_service_account")

    def disable_service_account(self, service_account_id: str) -> None:
        self._request("DELETE", f"{SERVICE_ACCOUNTS_PATH}/{service_account_id}/enabled", "disable_service_account")

    def delete_service_account(self, service_account_id: str) -> None:
        self._request("DELETE", f"{SERVICE_ACCOUNTS_PATH}/{service_account_id}", "delete_service_account")

    # --------------- Internal ---------------
    def _request(self, method: str, path: str, operation: str, json: Any = None) -> Dict[str, Any]:
        resp = self._send(method, path, operation, json=json)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise AccountAPIError(ERR_BAD_REQUEST, f"undecodable response to {operation}", resp.status_code) from exc

    def _send(
        self,
        method: str,
        path: str,
        operation: str,
        json: Any = None,
        authorized: bool = True,
        retried: bool = False,
    ) -> httpx.Response:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if authorized:
            token = self._current_token()
            headers["Authorization"] = f"Bearer {token.token}"

        start = time.monotonic()
        try:
            resp = self._client.request(method, f"{self._base_url}{path}", headers=headers, json=json)
        except httpx.HTTPError as exc:
            metrics.api_call_total.labels(api_type=API_TYPE, operation=operation, result="transport_error").inc()
            logger.error(f"Account API {operation} failed: {sanitize_exception(exc)}")
            raise
        finally:
            metrics.api_call_duration_seconds.labels(api_type=API_TYPE, operation=operation).observe(
                time.monotonic() - start
            )

        if resp.is_success:
            metrics.api_call_total.labels(api_type=API_TYPE, operation=operation, result="success").inc()
            return resp

        error = _api_error(resp)
        metrics.api_call_total.labels(api_type=API_TYPE, operation=operation, result=error.code).inc()
        if resp.status_code == 401 and authorized:
            # The token expired or was revoked
            self._token = None
            if not retried:
                logger.info(f"Account API {operation} was refused with HTTP 401, re-authenticating")
                return self._send(method, path, operation, json=json, retried=True)
        logger.error(f"Account API {operation} returned HTTP {resp.status_code}: {sanitize_exception(error)}")
        raise error


def _expires_at(expiration_sec: Optional[str]) -> Optional[float]:
    """Return when a token should be refreshed, or None if it does not say."""
    if not expiration_sec:
        return None
    try:
        seconds = float(expiration_sec)
    except ValueError:
        logger.warning(f"Ignoring unparseable token expiration {expiration_sec!r}")
        return None
    return time.monotonic() + seconds - TOKEN_REFRESH_MARGIN_SECONDS


def _dump(payload: PermissionPayload | ServiceAccountPayload) -> Dict[str, Any]:
    return payload.model_dump(by_alias=True, exclude_none=True)


def _api_error(resp: httpx.Response) -> AccountAPIError:
    """Build an AccountAPIError from an error response body."""
    code = ""
    message = ""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = str(body.get("code") or "")
        message = str(body.get("message") or "")
    if not code:
        code = ERR_UNAUTHORIZED if resp.status_code == 401 else (resp.reason_phrase or f"HTTP{resp.status_code}")
    return AccountAPIError(code, message, resp.status_code)
