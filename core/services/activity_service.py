"""
Activity logging collaborator.

Called explicitly by the operation that performed a write, after that write
has succeeded. Logging is best-effort: failures are logged and swallowed so
they never abort the primary operation.
"""
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from models.activity import Activity, ActivityAction

logger = logging.getLogger(__name__)


class ActivityService:
    """Writes activity log entries without ever raising."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_activity(
        self,
        user_id: str,
        action: ActivityAction,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        entity_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Activity]:
        """
        Record an activity.

        Returns:
            The stored Activity, or None if logging failed
        """
        try:
            activity = Activity(
                id=str(uuid4()),
                user_id=user_id,
                action=ActivityAction(action).value,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                details=details or {},
            )
            self.db.add(activity)
            await self.db.commit()
            return activity
        except Exception as e:
            logger.error("Failed to log activity %s for user %s: %s", action, user_id, e)
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.warning("Rollback after failed activity log also failed: %s", rollback_error)
            return None
