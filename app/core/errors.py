import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm.exc import StaleDataError

from app.auth.schemas import CurrentUser
from app.core.exceptions import ConflictError, ServiceError

logger = logging.getLogger(__name__)

GENERIC_INTERNAL_MESSAGE = "Internal server error"


def to_http_exception(error: ServiceError, current_user: Optional[CurrentUser] = None) -> HTTPException:
    """
    Map a service error to an HTTP response. Internal errors (configuration,
    consistency) keep their message only for administrative callers.
    """
    detail = error.to_detail()
    if error.internal:
        logger.error("internal error %s: %s", error.code, error.message)
        if current_user is None or not current_user.is_admin:
            detail = {"code": error.code, "message": GENERIC_INTERNAL_MESSAGE}
    return HTTPException(status_code=error.status_code, detail=detail)


def conflict_from_stale(exc: StaleDataError) -> ConflictError:
    logger.info("optimistic lock conflict: %s", exc)
    return ConflictError()
