"""
Sync Client for the remote authority
JSON over HTTP with uniform error reporting
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from edu_core.config import AppSettings
from edu_core.errors import RemoteRequestFailed
from edu_core.logging import get_logger
from edu_core.offline.connection_manager import ConnectionManager
from edu_core.ui.notifications import (
    REMOTE_FAILURE_NOTICE,
    LogNotifier,
    NoticeLevel,
    Notifier,
)

logger = get_logger(__name__)


@dataclass
class APIConfig:
    """Configuration for API connection"""
    api_name: str
    base_url: str
    headers: Optional[Dict[str, str]] = None
    timeout: float = 30


class SyncClient:
    """
    Transport to the remote authority.

    Requests run on a worker thread so the event loop keeps going while the
    remote is slow. Every failure is logged, counted on the ConnectionManager,
    shown once to the user (unless ``notify=False``) and re-raised as
    ``RemoteRequestFailed``.
    """

    def __init__(
        self,
        config: APIConfig,
        connection: Optional[ConnectionManager] = None,
        notifier: Optional[Notifier] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.connection = connection or ConnectionManager()
        self.notifier = notifier or LogNotifier()
        self.session = session or requests.Session()

        if config.headers:
            self.session.headers.update(config.headers)

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        connection: Optional[ConnectionManager] = None,
        notifier: Optional[Notifier] = None,
        session: Optional[requests.Session] = None,
    ) -> SyncClient:
        config = APIConfig(
            api_name="eduhub",
            base_url=settings.api_base_url,
            headers=dict(settings.headers),
            timeout=settings.request_timeout,
        )
        return cls(config, connection=connection, notifier=notifier, session=session)

    def _build_url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Prefer the remote's ``message`` field; fall back to the status code."""
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return f"HTTP error! status: {response.status_code}"

    def _make_request(self, endpoint: str, method: str, body: Any) -> Any:
        """
        Make HTTP request with error handling

        Returns:
            Parsed JSON, or None for 204 / empty bodies
        """
        url = self._build_url(endpoint)

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=body,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise RemoteRequestFailed(
                f"API request failed for {self.config.api_name}: {str(e)}",
                endpoint=endpoint,
                method=method,
            ) from e

        if not 200 <= response.status_code < 300:
            raise RemoteRequestFailed(
                self._error_message(response),
                status_code=response.status_code,
                endpoint=endpoint,
                method=method,
            )

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise RemoteRequestFailed(
                f"Invalid JSON in response: {e}",
                status_code=response.status_code,
                endpoint=endpoint,
                method=method,
            ) from e

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        notify: bool = True,
    ) -> Any:
        """
        Send one request to the remote.

        Args:
            endpoint: Path relative to the base URL (e.g. "/lessons")
            method: HTTP method
            body: JSON-serialisable request body
            notify: Show the standard failure notice to the user

        Returns:
            Parsed JSON response, or None

        Raises:
            RemoteRequestFailed: On transport errors and non-2xx responses
        """
        method = method.upper()
        try:
            result = await asyncio.to_thread(self._make_request, endpoint, method, body)
        except RemoteRequestFailed as e:
            logger.error(f"API request failed: {method} {endpoint}: {e.message}")
            self.connection.record_failure(e.message)
            if notify:
                self.notifier.notify(REMOTE_FAILURE_NOTICE, NoticeLevel.ERROR)
            raise

        self.connection.record_success()
        return result

    async def get(self, endpoint: str, notify: bool = True) -> Any:
        return await self.request(endpoint, "GET", notify=notify)

    async def post(self, endpoint: str, body: Any = None, notify: bool = True) -> Any:
        return await self.request(endpoint, "POST", body, notify=notify)

    async def put(self, endpoint: str, body: Any = None, notify: bool = True) -> Any:
        return await self.request(endpoint, "PUT", body, notify=notify)

    async def delete(self, endpoint: str, notify: bool = True) -> Any:
        return await self.request(endpoint, "DELETE", notify=notify)

    def close(self) -> None:
        self.session.close()
