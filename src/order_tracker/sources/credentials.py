"""Persisted OAuth state for the Etsy API.

The JSON file holds `refresh_token`, `access_token` and
`expires_at_utc_secs`. It is re-read at the start of every token request and
rewritten as a whole after every refresh, so several processes (CLI, API
server) can share it; concurrent refreshes simply race and the last writer
wins.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import CredentialPersistError, NotConnectedError, RefreshFailedError
from ..logging import get_logger
from ..domain.normalize import utcnow

LOG = get_logger("etsy-credentials")

# Cached token must outlive this margin to be reused.
EXPIRY_MARGIN = timedelta(seconds=300)
DEFAULT_EXPIRES_IN = 3600
CONNECT_URL = "https://order-tracker.kingsofalchemy.com/connect"
NOT_CONNECTED_MESSAGE = (
    f"Etsy not connected. Get a refresh token from {CONNECT_URL} "
    "and save it with `order-tracker connect-etsy --token <TOKEN>` (or POST /api/etsy/token)."
)


@dataclass
class CredentialConfig:
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: Any) -> "CredentialConfig":
        if not isinstance(data, dict):
            return cls()
        expires = data.get("expires_at_utc_secs")
        expires_at = None
        if isinstance(expires, int) and not isinstance(expires, bool):
            expires_at = datetime.fromtimestamp(expires, tz=timezone.utc)
        return cls(
            refresh_token=data.get("refresh_token") or None,
            access_token=data.get("access_token") or None,
            expires_at=expires_at,
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "refresh_token": self.refresh_token,
            "access_token": self.access_token,
            "expires_at_utc_secs": int(self.expires_at.timestamp()) if self.expires_at else None,
        }

    def cached_token(self, now: datetime) -> Optional[str]:
        if self.access_token and self.expires_at and now + EXPIRY_MARGIN < self.expires_at:
            return self.access_token
        return None


class CredentialStore:
    def __init__(
        self,
        path: str,
        *,
        keystring: Optional[str],
        token_url: str,
        legacy_secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.path = path
        self.keystring = keystring or ""
        self.token_url = token_url
        self.legacy_secret = legacy_secret
        self.client = client
        self.timeout = timeout
        self.clock = clock

    # ---------- persistence ----------
    def load(self) -> CredentialConfig:
        """Read the stored config; a missing or corrupt file means "never connected"."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return CredentialConfig()
        except (OSError, ValueError) as e:
            LOG.warning(f"Ignoring unreadable credential file {self.path}: {e}")
            return CredentialConfig()
        return CredentialConfig.from_json(data)

    def save(self, cfg: CredentialConfig) -> None:
        parent = os.path.dirname(self.path) or "."
        try:
            os.makedirs(parent, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".etsy_oauth.", suffix=".tmp", dir=parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(cfg.to_json(), f, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise CredentialPersistError(f"Could not write {self.path}: {e}") from e

    def persist_refresh_token(self, token: str) -> None:
        """Store a refresh token from the web OAuth flow; next use refreshes."""
        token = (token or "").strip()
        if not token:
            raise ValueError("refresh token must not be empty")
        cfg = self.load()
        cfg.refresh_token = token
        cfg.access_token = None
        cfg.expires_at = None
        self.save(cfg)
        LOG.info(f"Saved Etsy refresh token to {self.path}")

    # ---------- tokens ----------
    async def get_valid_token(self) -> str:
        cfg = self.load()
        now = self.clock()
        cached = cfg.cached_token(now)
        if cached:
            return cached
        if cfg.refresh_token:
            return await self._refresh(cfg, cfg.refresh_token)
        if self.legacy_secret:
            LOG.info("No refresh token stored; using static ETSY_SECRET as bearer token")
            return self.legacy_secret
        raise NotConnectedError(NOT_CONNECTED_MESSAGE)

    async def _refresh(self, cfg: CredentialConfig, refresh_token: str) -> str:
        LOG.info("Refreshing Etsy access token...")
        form = {
            "grant_type": "refresh_token",
            "client_id": self.keystring,
            "refresh_token": refresh_token,
        }
        try:
            if self.client is not None:
                r = await self.client.post(self.token_url, data=form)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.post(self.token_url, data=form)
        except httpx.HTTPError as e:
            raise RefreshFailedError(f"refresh request failed: {e}") from e

        if not r.is_success:
            raise RefreshFailedError(f"{r.status_code} - {r.text}")
        try:
            payload = r.json()
            access_token = str(payload["access_token"])
            expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
            rotated = payload.get("refresh_token")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise RefreshFailedError(f"could not parse token response: {e}") from e

        cfg.access_token = access_token
        cfg.expires_at = self.clock() + timedelta(seconds=expires_in)
        if rotated:
            cfg.refresh_token = str(rotated)
        try:
            self.save(cfg)
        except CredentialPersistError as e:
            # The fresh token is still good for this fetch cycle.
            LOG.error(f"Refreshed token could not be persisted: {e}")
        LOG.info(f"Etsy token refreshed; valid until {cfg.expires_at.isoformat()}")
        return access_token
