"""
Identity Service

Admin lookups against Supabase Auth. Used when a verified token carries no
email claim and checkout still needs one for the Stripe customer.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from app.config.settings import get_settings


logger = logging.getLogger(__name__)


class IdentityService:
    """Thin wrapper over the Supabase admin API."""

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            settings = get_settings()
            client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        self._client = client

    async def get_user_email(self, user_id: str) -> Optional[str]:
        """Look up a user's email by ID; None if the lookup fails."""
        try:
            response = await asyncio.to_thread(
                self._client.auth.admin.get_user_by_id, user_id
            )
        except Exception as e:
            logger.warning(f"Failed to look up user {user_id}: {e}")
            return None

        user = getattr(response, "user", None)
        return getattr(user, "email", None) if user else None


@lru_cache
def get_identity_service() -> IdentityService:
    """Get cached identity service instance."""
    return IdentityService()
