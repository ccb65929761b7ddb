"""Access-token providers for upstream and destination connections."""

import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import requests
import structlog
from requests.auth import HTTPBasicAuth

from calsync.models.config import SyncSettings
from calsync.models.sync_config import OAuthCredential
from calsync.storage.stores import CredentialStore
from calsync.utils.errors import ConfigurationError, CredentialExpiredError, ProviderError

log = structlog.stdlib.get_logger()

RECONNECT_MESSAGE = "Access was revoked or expired. Please reconnect your account."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialProvider(ABC):
    """Hands out a usable access token for one connection."""

    @abstractmethod
    def get_access_token(self) -> str:
        """
        Return a token that stays valid for at least the refresh threshold.

        Raises:
            CredentialExpiredError: If the connection must be re-authorized
        """


class StaticCredentialProvider(CredentialProvider):
    """Tokens that never expire (Notion integrations)."""

    def __init__(self, store: CredentialStore, credential_id: str):
        self._store = store
        self._credential_id = credential_id

    def get_access_token(self) -> str:
        credential = self._store.get(self._credential_id)
        if credential is None:
            raise ConfigurationError(f"Credential {self._credential_id} not found")
        return credential.access_token


class OAuthCredentialProvider(CredentialProvider):
    """
    Refreshing OAuth provider.

    Refreshes are serialized per connection through a lease on the credential
    row: the worker holding the lease refreshes, any other worker waits and
    re-reads the stored token. Providers that rotate refresh tokens would
    otherwise invalidate each other's refresh token.
    """

    def __init__(
        self,
        store: CredentialStore,
        credential_id: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        settings: SyncSettings | None = None,
        basic_auth: bool = False,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = _utc_now,
        wait_attempts: int = 5,
        wait_seconds: float = 1.0,
    ):
        """
        Initialize OAuth credential provider.

        Args:
            store: Credential persistence
            credential_id: Connection id
            token_url: OAuth token endpoint
            client_id: OAuth client id
            client_secret: OAuth client secret
            settings: Refresh threshold, lease length and timeout
            basic_auth: Send client credentials as HTTP Basic auth (Airtable)
                instead of form fields (Google)
            session: Optional pre-built session
            clock: Source of "now"
            wait_attempts: Re-reads while another worker holds the lease
            wait_seconds: Pause between re-reads
        """
        self._store = store
        self._credential_id = credential_id
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._settings = settings or SyncSettings()
        self._basic_auth = basic_auth
        self._session = session or requests.Session()
        self._clock = clock
        self._owner = uuid.uuid4().hex
        self._wait_attempts = wait_attempts
        self._wait_seconds = wait_seconds

    def needs_refresh(self, credential: OAuthCredential) -> bool:
        if credential.expires_at is None:
            return False
        threshold = timedelta(seconds=self._settings.token_refresh_threshold_seconds)
        return credential.expires_at - self._clock() <= threshold

    def get_access_token(self) -> str:
        credential = self._load()
        if not self.needs_refresh(credential):
            return credential.access_token

        if not credential.refresh_token:
            raise CredentialExpiredError(RECONNECT_MESSAGE)

        now = self._clock()
        lease_until = now + timedelta(seconds=self._settings.refresh_lease_seconds)
        if not self._store.claim_refresh(self._credential_id, self._owner, lease_until, now):
            return self._wait_for_other_refresh()

        try:
            # Re-read under the lease; another worker may have just refreshed
            credential = self._load()
            if not self.needs_refresh(credential):
                return credential.access_token
            return self._refresh(credential)
        finally:
            self._store.release_refresh(self._credential_id, self._owner)

    def _refresh(self, credential: OAuthCredential) -> str:
        log.info("refreshing_access_token", credential_id=self._credential_id, provider=credential.provider.value)

        data: dict[str, Any] = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        }
        auth = None
        if self._basic_auth:
            auth = HTTPBasicAuth(self._client_id, self._client_secret)
        else:
            data["client_id"] = self._client_id
            data["client_secret"] = self._client_secret

        response = self._session.post(
            self._token_url,
            data=data,
            auth=auth,
            timeout=self._settings.request_timeout_seconds,
        )

        if not response.ok:
            error_code = self._error_code(response)
            log.error(
                "token_refresh_failed",
                credential_id=self._credential_id,
                status_code=response.status_code,
                error_code=error_code,
            )
            if error_code == "invalid_grant" or response.status_code == 401:
                raise CredentialExpiredError(RECONNECT_MESSAGE)
            raise ProviderError(
                f"Failed to refresh access token: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        payload = response.json()
        access_token = payload["access_token"]
        expires_in = payload.get("expires_in")
        expires_at = self._clock() + timedelta(seconds=int(expires_in)) if expires_in else None

        self._store.update_tokens(
            self._credential_id,
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=payload.get("refresh_token"),
        )
        log.info("access_token_refreshed", credential_id=self._credential_id, expires_at=expires_at)
        return access_token

    def _wait_for_other_refresh(self) -> str:
        log.info("waiting_for_concurrent_refresh", credential_id=self._credential_id)
        for _ in range(self._wait_attempts):
            time.sleep(self._wait_seconds)
            credential = self._load()
            if not self.needs_refresh(credential):
                return credential.access_token
        raise ProviderError(f"Token refresh for {self._credential_id} is held by another worker")

    def _load(self) -> OAuthCredential:
        credential = self._store.get(self._credential_id)
        if credential is None:
            raise ConfigurationError(f"Credential {self._credential_id} not found")
        return credential

    @staticmethod
    def _error_code(response: requests.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("error") if isinstance(body, dict) else None
