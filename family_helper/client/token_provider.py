"""
Token provider.

Lets the API client obtain a fresh access token without knowing the auth
mechanism behind it (a stored refresh token, an identity-provider SDK, ...).
"""
import logging
from typing import Callable, Optional

logger = logging.getLogger("family_helper.client")

TokenRefresher = Callable[[], Optional[str]]


class TokenProvider:
    def __init__(self):
        self._refresher: Optional[TokenRefresher] = None

    def set_refresher(self, refresher: TokenRefresher) -> None:
        self._refresher = refresher

    def has_refresher(self) -> bool:
        return self._refresher is not None

    def clear(self) -> None:
        """Forget the refresher (on logout)."""
        self._refresher = None

    def refresh(self) -> Optional[str]:
        """A fresh token, or None if nothing is registered or the refresher failed."""
        if self._refresher is None:
            return None
        try:
            return self._refresher()
        except Exception as e:
            logger.error(f"[token_provider] refresh failed: {e}")
            return None


default_provider = TokenProvider()


def set_token_refresher(refresher: TokenRefresher) -> None:
    default_provider.set_refresher(refresher)


def has_token_refresher() -> bool:
    return default_provider.has_refresher()


def clear_token_refresher() -> None:
    default_provider.clear()


def refresh_token() -> Optional[str]:
    return default_provider.refresh()
