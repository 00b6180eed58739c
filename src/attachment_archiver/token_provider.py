"""Google OAuth credential lifecycle."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Sequence

import requests
from google.auth import exceptions as google_exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2 import OAuth2Error

from .context import ArchiverContext
from .errors import AuthError, TokenRefreshError
from .models import TokenStatus
from .utils import ensure_utc, utcnow

REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_LIFETIME = timedelta(hours=1)


def _naive_utc(dt: datetime) -> datetime:
    """google-auth keeps ``expiry`` as a naive UTC datetime."""
    return ensure_utc(dt).replace(tzinfo=None)


class CredentialStore:
    """Authorized-user JSON file, as written by ``Credentials.to_json()``."""

    def __init__(self, path: Path, scopes: Sequence[str] | None = None) -> None:
        self.path = path
        self.scopes = list(scopes) if scopes else None

    def load(self) -> Credentials | None:
        if not self.path.exists():
            return None
        try:
            info = json.loads(self.path.read_text())
            return Credentials.from_authorized_user_info(info, self.scopes)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AuthError(f"Stored credential at {self.path} is unreadable: {exc}") from exc

    def save(self, credentials: Credentials) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(credentials.to_json())

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class TokenProvider:
    """Hands out a valid bearer token, refreshing it when close to expiry."""

    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
    AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"

    def __init__(self, context: ArchiverContext, store: CredentialStore | None = None) -> None:
        self.settings = context.settings
        self.session = context.session
        self.logger = context.child_logger("auth")
        self.store = store or CredentialStore(
            self.settings.google_token_file, self.settings.google_scopes
        )
        self._credentials: Credentials | None = None

    def get_valid_credential(self) -> str:
        """Return an access token with more than five minutes of life left."""
        credentials = self._current()
        if credentials is None:
            raise AuthError("no credential")
        remaining = self._remaining(credentials)
        if not credentials.token or remaining is None or remaining < REFRESH_BUFFER:
            self.logger.info("Access token expires at %s; refreshing", credentials.expiry)
            credentials = self.refresh(credentials.refresh_token)
        return credentials.token

    def refresh(self, refresh_token: str | None) -> Credentials:
        if not refresh_token:
            raise TokenRefreshError("No refresh token available", requires_reauthorization=True)
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.TOKEN_ENDPOINT,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            scopes=self.settings.google_scopes,
        )
        try:
            credentials.refresh(Request(self.session))
        except google_exceptions.RefreshError as exc:
            error = _error_code(exc)
            self.logger.error("Token refresh rejected: %s", exc)
            raise TokenRefreshError(
                f"Token refresh rejected: {exc}",
                requires_reauthorization=error == "invalid_grant",
            ) from exc
        except google_exceptions.TransportError as exc:
            self.logger.error("Token refresh failed: %s", exc)
            raise TokenRefreshError(f"Token refresh failed: {exc}") from exc

        if credentials.expiry is None:
            credentials.expiry = _naive_utc(utcnow() + DEFAULT_LIFETIME)
        self._persist(credentials)
        self.logger.info("Access token refreshed; valid until %s", credentials.expiry)
        return credentials

    def exchange_authorization_code(self, code: str, redirect_uri: str) -> Credentials:
        """One-time bootstrap: trade the consent-screen code for tokens."""
        flow = self._flow(redirect_uri)
        try:
            flow.fetch_token(code=code, timeout=self.settings.http_timeout)
        except OAuth2Error as exc:
            self.logger.error("Authorization code rejected: %s", exc.error)
            raise AuthError(f"Authorization code rejected: {exc.error} - {exc.description}") from exc
        except requests.RequestException as exc:
            raise AuthError(f"Authorization code exchange failed: {exc}") from exc
        except Warning as exc:
            # oauthlib raises a Warning when the granted scopes differ from the requested ones
            raise AuthError(f"Consent did not grant the requested scopes: {exc}") from exc

        credentials = flow.credentials
        if not credentials.refresh_token:
            raise AuthError("no refresh token")
        self._persist(credentials)
        self.logger.info("Authorization completed; credential stored at %s", self.store.path)
        return credentials

    def authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        kwargs = {"access_type": "offline", "prompt": "consent"}
        if state:
            kwargs["state"] = state
        url, _ = self._flow(redirect_uri).authorization_url(**kwargs)
        return url

    def validate(self) -> TokenStatus:
        """Report credential state; never raises."""
        try:
            credentials = self._current()
        except AuthError:
            credentials = None
        if credentials is None:
            return TokenStatus(has_credential=False, is_expired=True)
        remaining = self._remaining(credentials)
        if remaining is None:
            return TokenStatus(has_credential=True, is_expired=True)
        seconds = int(remaining.total_seconds())
        return TokenStatus(
            has_credential=True,
            is_expired=seconds <= 0,
            seconds_remaining=max(seconds, 0),
        )

    def clear(self) -> None:
        self.store.clear()
        self._credentials = None

    def _current(self) -> Credentials | None:
        if self._credentials is None:
            self._credentials = self.store.load()
        return self._credentials

    def _persist(self, credentials: Credentials) -> None:
        self.store.save(credentials)
        self._credentials = credentials

    def _flow(self, redirect_uri: str) -> Flow:
        client_config = {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": self.AUTH_ENDPOINT,
                "token_uri": self.TOKEN_ENDPOINT,
                "redirect_uris": [redirect_uri],
            }
        }
        # auth-url and authorize run in separate invocations, so no PKCE verifier survives
        return Flow.from_client_config(
            client_config,
            scopes=self.settings.google_scopes,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=False,
        )

    @staticmethod
    def _remaining(credentials: Credentials) -> timedelta | None:
        if credentials.expiry is None:
            return None
        return ensure_utc(credentials.expiry) - utcnow()


def _error_code(exc: google_exceptions.RefreshError) -> str | None:
    details = exc.args[1] if len(exc.args) > 1 else None
    if isinstance(details, dict):
        return details.get("error")
    return None
