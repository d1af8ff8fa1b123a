"""
Account directory: resolves an account's email from the identity system.

Subscription lifecycle events carry no email, so cancellation notices need a
lookup. Lookups are best-effort; None means "skip the notification".
"""

import logging
from typing import Optional, Protocol

import httpx


logger = logging.getLogger(__name__)


class AccountDirectory(Protocol):
    def email_for(self, account_id: str) -> Optional[str]:
        ...


class NullAccountDirectory:
    def email_for(self, account_id: str) -> Optional[str]:
        return None


class SupabaseAccountDirectory:
    """Reads users through the Supabase auth admin API with the service role key."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
        }

    def email_for(self, account_id: str) -> Optional[str]:
        try:
            response = self.client.get(
                f"{self.base_url}/auth/v1/admin/users/{account_id}",
                headers=self._headers,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "directory.lookup_failed",
                extra={"account_id": account_id, "error_code": type(e).__name__},
            )
            return None

        user = payload.get("user", payload) if isinstance(payload, dict) else {}
        return user.get("email") if isinstance(user, dict) else None

    def close(self) -> None:
        self.client.close()
