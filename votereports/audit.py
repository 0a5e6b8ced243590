import logging

from sqlalchemy.exc import SQLAlchemyError

from .errors import DataAccessError
from .models import db, AuditLog
from .utils.context import RequestContext

logger = logging.getLogger(__name__)


def record(ctx: RequestContext, action: str, details: str = "") -> AuditLog:
    """Write one audit row for a served report and mirror it to the log."""
    message = f"Action: {action}"
    if details:
        message += f" | Details: {details}"
    if ctx.actor_id:
        message += f" | User ID: {ctx.actor_id}"
    logger.info(message)

    entry = AuditLog(
        user_id=ctx.actor_id,
        action=action,
        details=details,
        ip_address=ctx.ip_address or None,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Could not write audit log row for %s", action)
        raise DataAccessError("Could not write audit log.") from exc
    return entry
