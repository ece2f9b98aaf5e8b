# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Kubernetes substrate client

Speaks the Kubernetes REST API directly over httpx:

    Quota Limits  ->  /apis/<group>/<version>/<plural>           (custom resource)
    Hard Limits   ->  /api/v1/namespaces/<ns>/resourcequotas     (core resource)

One ``httpx.AsyncClient`` is held for the lifetime of the client; the manager
owns the client and closes it on shutdown.

Usage:
    async with KubeSubstrateClient(credentials, config.substrate) as client:
        queues = await client.list_quota_limits()
"""

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from ..core.config import SubstrateConfig
from ..core.exceptions import (
    SubstrateAlreadyExistsError,
    SubstrateConflictError,
    SubstrateConnectionError,
    SubstrateError,
    SubstrateNotFoundError,
)
from ..core.models import HardLimit, QuotaLimit
from .base import SubstrateClient
from .credentials import Credentials

logger = logging.getLogger("quotasync.substrate")


def _describe(obj: Any) -> str:
    if isinstance(obj, dict):
        metadata = obj.get("metadata")
        if isinstance(metadata, dict):
            return f"{metadata.get('namespace')}/{metadata.get('name')}"
    return repr(obj)[:100]


class KubeSubstrateClient(SubstrateClient):
    """Substrate client backed by a Kubernetes API server."""

    def __init__(
        self,
        credentials: Credentials,
        config: Optional[SubstrateConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            credentials: Server address and auth
            config: Resource coordinates and timeouts
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.credentials = credentials
        self.config = config or SubstrateConfig()

        client_kwargs: Dict[str, Any] = {
            "base_url": credentials.server,
            "headers": credentials.headers(),
            "timeout": self.config.request_timeout,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["verify"] = credentials.ssl_context()

        self._client = httpx.AsyncClient(**client_kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
        self.credentials.cleanup()

    # =========================================================================
    # Paths
    # =========================================================================

    @property
    def quota_limits_path(self) -> str:
        c = self.config
        return f"/apis/{c.quota_group}/{c.quota_version}/{c.quota_plural}"

    @staticmethod
    def hard_limits_path(namespace: str, name: Optional[str] = None) -> str:
        path = f"/api/v1/namespaces/{namespace}/resourcequotas"
        if name:
            path += f"/{name}"
        return path

    # =========================================================================
    # Request plumbing
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SubstrateConnectionError(
                f"{method} {path} failed: {e}",
                namespace=namespace,
                name=name,
                cause=e,
            )

        if response.status_code >= 400:
            raise self._error_for(method, path, response, namespace, name)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise SubstrateConnectionError(
                f"{method} {path} returned invalid JSON",
                namespace=namespace,
                name=name,
                status_code=response.status_code,
                cause=e,
            )

    @staticmethod
    def _error_for(
        method: str,
        path: str,
        response: httpx.Response,
        namespace: Optional[str],
        name: Optional[str],
    ) -> SubstrateError:
        reason = ""
        message = response.text
        try:
            status = response.json()
            reason = status.get("reason", "")
            message = status.get("message", message)
        except ValueError:
            pass

        code = response.status_code
        text = f"{method} {path} -> {code}: {message}"
        kwargs = {"namespace": namespace, "name": name, "status_code": code}

        if code == 404:
            return SubstrateNotFoundError(text, **kwargs)
        if code == 409:
            if reason == "AlreadyExists" or method == "POST":
                return SubstrateAlreadyExistsError(text, **kwargs)
            return SubstrateConflictError(text, **kwargs)
        if code >= 500:
            return SubstrateConnectionError(text, **kwargs)
        return SubstrateError(text, **kwargs)

    # =========================================================================
    # Quota Limits
    # =========================================================================

    async def list_quota_limits_with_version(
        self,
    ) -> Tuple[List[QuotaLimit], Optional[str]]:
        """All Quota Limits plus the list's resourceVersion (watch resume point)"""
        data = await self._request("GET", self.quota_limits_path)
        items = []
        for item in data.get("items") or []:
            try:
                items.append(QuotaLimit.from_object(item))
            except (KeyError, TypeError, AttributeError, ValidationError) as e:
                logger.warning(
                    f"Skipping malformed quota limit {_describe(item)}: {e}"
                )
        version = (data.get("metadata") or {}).get("resourceVersion")
        return items, version

    async def list_quota_limits(self) -> List[QuotaLimit]:
        items, _ = await self.list_quota_limits_with_version()
        return items

    async def watch_quota_limits(
        self,
        resource_version: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Stream raw watch events for Quota Limits.

        Yields:
            Decoded ``{"type": ..., "object": ...}`` events; lines that are not
            JSON objects are skipped
        """
        params: Dict[str, Any] = {
            "watch": "true",
            "allowWatchBookmarks": "true",
            "timeoutSeconds": timeout_seconds,
        }
        if resource_version:
            params["resourceVersion"] = resource_version

        # Server closes the stream after timeoutSeconds; give it slack
        timeout = httpx.Timeout(
            self.config.request_timeout, read=timeout_seconds + 30
        )

        try:
            async with self._client.stream(
                "GET", self.quota_limits_path, params=params, timeout=timeout
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._error_for(
                        "GET", self.quota_limits_path, response, None, None
                    )
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping undecodable watch line: {line[:200]}")
                        continue
                    if not isinstance(event, dict):
                        logger.debug(f"Skipping non-object watch line: {line[:200]}")
                        continue
                    yield event
        except httpx.HTTPError as e:
            raise SubstrateConnectionError(f"Watch on quota limits failed: {e}", cause=e)

    # =========================================================================
    # Hard Limits
    # =========================================================================

    async def list_hard_limits(self, namespace: str) -> List[HardLimit]:
        data = await self._request(
            "GET", self.hard_limits_path(namespace), namespace=namespace
        )
        try:
            return [HardLimit.from_object(item) for item in data.get("items") or []]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            # Hard Limit counts must be exact, so never drop an item here
            raise SubstrateError(
                f"Malformed resource quota in {namespace}",
                namespace=namespace,
                cause=e,
            )

    async def get_hard_limit(self, namespace: str, name: str) -> HardLimit:
        data = await self._request(
            "GET",
            self.hard_limits_path(namespace, name),
            namespace=namespace,
            name=name,
        )
        return HardLimit.from_object(data)

    async def create_hard_limit(
        self, namespace: str, hard_limit: HardLimit
    ) -> HardLimit:
        body = hard_limit.to_object()
        body["metadata"]["namespace"] = namespace
        body["metadata"].pop("resourceVersion", None)
        data = await self._request(
            "POST",
            self.hard_limits_path(namespace),
            namespace=namespace,
            name=hard_limit.name,
            json=body,
        )
        return HardLimit.from_object(data)

    async def update_hard_limit(
        self, namespace: str, hard_limit: HardLimit
    ) -> HardLimit:
        # resourceVersion in the body makes the PUT conditional (409 on mismatch)
        body = hard_limit.to_object()
        body["metadata"]["namespace"] = namespace
        data = await self._request(
            "PUT",
            self.hard_limits_path(namespace, hard_limit.name),
            namespace=namespace,
            name=hard_limit.name,
            json=body,
        )
        return HardLimit.from_object(data)

    async def delete_hard_limit(self, namespace: str, name: str) -> None:
        await self._request(
            "DELETE",
            self.hard_limits_path(namespace, name),
            namespace=namespace,
            name=name,
        )
