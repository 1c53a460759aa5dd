from __future__ import annotations

import logging

from storefront.celery_app import celery_app
from storefront.core.database import SessionLocal
from storefront.services.refresh_tokens import delete_expired_refresh_tokens

logger = logging.getLogger(__name__)


@celery_app.task(name="maintenance.cleanup_expired_refresh_tokens")
def cleanup_expired_refresh_tokens() -> int:
    db = SessionLocal()
    try:
        count = delete_expired_refresh_tokens(db)
    except Exception:
        db.rollback()
        logger.exception("Expired refresh token cleanup failed")
        raise
    finally:
        db.close()
    logger.info("Cleaned up %s expired refresh tokens", count)
    return count
