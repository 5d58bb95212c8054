"""Exception hierarchy for order fetching, credentials and the catalog."""

from __future__ import annotations

from typing import Iterable, Optional


class OrderTrackerError(Exception):
    """Base class for every error raised by order_tracker."""


# ---------- credentials ----------
class AuthError(OrderTrackerError):
    pass


class NotConnectedError(AuthError):
    pass


class RefreshFailedError(AuthError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Etsy token refresh failed: {detail}")
        self.detail = detail


class CredentialPersistError(OrderTrackerError):
    pass


# ---------- fetching ----------
class FetchError(OrderTrackerError):
    pass


class HttpStatusError(FetchError):
    def __init__(self, status: int, *, offset: Optional[int] = None, body: str = "", hint: str = "") -> None:
        self.status = int(status)
        self.offset = offset
        self.body = body
        where = f" (offset={offset})" if offset is not None else ""
        detail = body or hint
        msg = f"API error: HTTP {self.status}{where}"
        if detail:
            msg = f"{msg} - {detail}"
        super().__init__(msg)


class ResponseParseError(FetchError):
    def __init__(self, detail: str, preview: str = "") -> None:
        self.detail = detail
        self.preview = preview
        msg = f"response parse failed: {detail}"
        if preview:
            msg = f"{msg} | raw preview: {preview}"
        super().__init__(msg)


class TransportError(FetchError):
    def __init__(self, detail: str, *, offset: Optional[int] = None) -> None:
        self.detail = detail
        self.offset = offset
        where = f" (offset={offset})" if offset is not None else ""
        super().__init__(f"request failed{where}: {detail}")


class SourceAuthError(FetchError):
    def __init__(self, cause: AuthError) -> None:
        super().__init__(str(cause))
        self.cause = cause


class SourceNotConfiguredError(FetchError):
    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"not configured (set {', '.join(self.missing)} in the environment or .env)")


# ---------- catalog ----------
class CatalogUnavailableError(OrderTrackerError):
    pass
