"""Builders for the remote clients."""

from __future__ import annotations

import os
from typing import Any, Mapping

from ..constants import DEFAULT_ACCOUNT_API_URL, HTTP_TIMEOUT_SECONDS
from ..services.account.client import AccountAPIClient
from ..services.s3.client import ObjectStorageClient


def _setting(settings: Mapping[str, Any], key: str, env: str, default: Any = None) -> Any:
    value = settings.get(key)
    if value is None or value == "":
        value = os.getenv(env, default)
    return value


def create_storage_client(settings: Mapping[str, Any] | None = None) -> ObjectStorageClient:
    """Create an object storage client from settings, falling back to the environment.

    Args:
        settings: Mapping with ``access_key``, ``secret_key``, ``region``,
            ``endpoint`` and optional ``path_style`` / ``insecure_skip_verify``

    Returns:
        Configured object storage client

    Raises:
        ValueError: If configuration is invalid
    """
    settings = settings or {}
    access_key = _setting(settings, "access_key", "LYVECLOUD_S3_ACCESS_KEY")
    secret_key = _setting(settings, "secret_key", "LYVECLOUD_S3_SECRET_KEY")
    region = _setting(settings, "region", "LYVECLOUD_S3_REGION")
    endpoint = _setting(settings, "endpoint", "LYVECLOUD_S3_ENDPOINT")

    if not access_key or not secret_key:
        raise ValueError("access_key and secret_key are required")
    if not endpoint or not region:
        raise ValueError("endpoint and region are required")

    return ObjectStorageClient(
        endpoint=endpoint,
        region=region,
        access_key=access_key,
        secret_key=secret_key,
        path_style=settings.get("path_style", True),
        insecure_skip_verify=settings.get("insecure_skip_verify", False),
    )


def create_account_client(settings: Mapping[str, Any] | None = None) -> AccountAPIClient:
    """Create an account API client from settings, falling back to the environment.

    Raises:
        ValueError: If credentials are missing
    """
    settings = settings or {}
    account_id = _setting(settings, "account_id", "LYVECLOUD_ACCOUNT_ID")
    access_key = _setting(settings, "access_key", "LYVECLOUD_ACCOUNT_ACCESS_KEY")
    secret = _setting(settings, "secret", "LYVECLOUD_ACCOUNT_SECRET")
    base_url = _setting(settings, "base_url", "LYVECLOUD_ACCOUNT_API_URL", DEFAULT_ACCOUNT_API_URL)

    if not account_id or not access_key or not secret:
        raise ValueError("account_id, access_key and secret are required")

    return AccountAPIClient(
        account_id,
        access_key,
        secret,
        base_url=base_url,
        timeout=float(settings.get("timeout", HTTP_TIMEOUT_SECONDS)),
    )
