"""
HTTP client for the Family Helper API (support console and scripts).

- Sends the current access token as a bearer header.
- On 401, asks the TokenProvider for a fresh token once and retries.
- 403 responses carrying a read-only group code raise ReadOnlyGroupError so
  callers can show the specific message instead of a generic failure.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from family_helper.client.token_provider import TokenProvider, default_provider
from family_helper.features.access.permissions import READ_ONLY_ERROR_CODES

logger = logging.getLogger("family_helper.client")

DEFAULT_TIMEOUT = 30.0


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, code: Optional[str] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
        self.payload = payload or {}


class ReadOnlyGroupError(ApiError):
    """The target group is read-only; ``message`` is meant for the user."""


class TokenRefreshError(ApiError):
    """The access token was rejected and no fresh one could be obtained."""


def _payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class FamilyHelperClient:
    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        *,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.access_token = access_token
        self.token_provider = token_provider or default_provider
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "FamilyHelperClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _send(self, method: str, path: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> httpx.Response:
        headers = dict(headers or {})
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        logger.debug(f"[api] {method} {path}")
        return self._http.request(method, path, headers=headers, **kwargs)

    def _refresh_access_token(self) -> str:
        if not self.token_provider.has_refresher():
            self.access_token = None
            raise TokenRefreshError(401, "No token refresher registered", code="no_token_refresher")
        token = self.token_provider.refresh()
        if not token:
            self.access_token = None
            raise TokenRefreshError(401, "Token refresh failed", code="token_refresh_failed")
        self.access_token = token
        return token

    def request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self._send(method, path, **kwargs)

        if response.status_code == 401:
            logger.info(f"[api] 401 on {path}, refreshing token")
            self._refresh_access_token()
            response = self._send(method, path, **kwargs)

        if response.is_success:
            return _payload(response)

        body = _payload(response)
        code = body.get("code")
        message = body.get("message") or body.get("error") or response.reason_phrase
        if response.status_code == 403 and code in READ_ONLY_ERROR_CODES:
            raise ReadOnlyGroupError(403, message, code=code, payload=body)
        logger.warning(f"[api] {method} {path} failed: {response.status_code} {code}")
        raise ApiError(response.status_code, message, code=code, payload=body)

    # Support console

    def check_support_access(self) -> bool:
        return bool(self.request("GET", "/support/check-access").get("isSupportUser"))

    def list_users(self, search: str = "", page: int = 1, limit: int = 20) -> Dict[str, Any]:
        return self.request("GET", "/support/users", params={"search": search, "page": page, "limit": limit})

    def set_subscription(self, user_id: str, grant: bool) -> Dict[str, Any]:
        return self.request("PUT", f"/support/users/{user_id}/subscription", json={"grant": grant})

    def set_support_access(self, user_id: str, grant: bool) -> Dict[str, Any]:
        return self.request("PUT", f"/support/users/{user_id}/support-access", json={"grant": grant})

    def set_lock(self, user_id: str, lock: bool, reason: Optional[str] = None) -> Dict[str, Any]:
        return self.request("PUT", f"/support/users/{user_id}/lock", json={"lock": lock, "reason": reason})

    def set_subscription_end_date(self, user_id: str, end_date: datetime) -> Dict[str, Any]:
        return self.request(
            "PUT",
            f"/support/users/{user_id}/subscription-end-date",
            json={"subscriptionEndDate": end_date.isoformat()},
        )

    def set_renewal_date(self, user_id: str, renewal_date: datetime) -> Dict[str, Any]:
        return self.request(
            "PUT",
            f"/support/users/{user_id}/renewal-date",
            json={"renewalDate": renewal_date.isoformat()},
        )

    def expire_subscription(self, user_id: str) -> Dict[str, Any]:
        return self.request("PUT", f"/support/users/{user_id}/expire-subscription")

    def audit_logs(self, search: str = "", action: str = "", page: int = 1, limit: int = 50) -> Dict[str, Any]:
        return self.request(
            "GET", "/support/audit-logs",
            params={"search": search, "action": action, "page": page, "limit": limit},
        )

    # Wiki

    def create_wiki_document(self, group_id: str, title: str, content: str = "") -> Dict[str, Any]:
        return self.request("POST", f"/groups/{group_id}/wiki-documents", json={"title": title, "content": content})
