"""Authenticated request helper shared by the Gmail and Drive clients."""

from __future__ import annotations

from typing import Any

import requests
from requests import Response

from .context import ArchiverContext
from .errors import TransportError
from .token_provider import TokenProvider


class GoogleApiClient:
    """Base for thin REST wrappers that authenticate through a TokenProvider."""

    API_NAME = "Google API"

    def __init__(self, context: ArchiverContext, tokens: TokenProvider, logger_name: str) -> None:
        self.settings = context.settings
        self.session = context.session
        self.tokens = tokens
        self.logger = context.child_logger(logger_name)

    def _request(self, method: str, url: str, **kwargs: Any) -> Response:
        headers = {"Authorization": f"Bearer {self.tokens.get_valid_credential()}"}
        headers.update(kwargs.pop("headers", None) or {})
        kwargs.setdefault("timeout", self.settings.http_timeout)
        try:
            resp = self.session.request(method, url, headers=headers, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{self.API_NAME} request failed: {exc}", retryable=True) from exc
        if resp.status_code >= 400:
            message, reason = self._error_details(resp)
            self.logger.error("%s request failed (%s): %s", self.API_NAME, resp.status_code, message)
            raise TransportError(
                f"{self.API_NAME} error {resp.status_code}: {message}",
                status_code=resp.status_code,
                reason=reason,
            )
        return resp

    def _get_json(self, url: str, params: dict | None = None) -> dict[str, Any]:
        return self._request("GET", url, params=params).json()

    @staticmethod
    def _error_details(resp: Response) -> tuple[str, str | None]:
        try:
            payload = resp.json()
        except ValueError:
            return resp.text or resp.reason or "", None
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            return str(error or payload), None
        errors = error.get("errors") or [{}]
        return error.get("message", ""), errors[0].get("reason")
