"""Auth audit trail

Appends rows to ``auth_events``. Failing to write an event never fails the
authentication operation that produced it.
"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suite_auth.domain.models import AuthEventType
from suite_auth.models import AuthEvent

logger = logging.getLogger(__name__)


class AuthEventLog:
    """Writes authentication events"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        event_type: AuthEventType,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        provider: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        AuthEvent(
                            event_type=event_type.value,
                            user_id=user_id,
                            email=email,
                            provider=provider,
                            details=details or {},
                        )
                    )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record auth event {event_type.value}: {e}")
