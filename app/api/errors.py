"""
HTTP mapping for RelayError raised inside operator-facing routes.
"""

import logging

from fastapi import HTTPException

from app.models.errors import ErrorClass, RelayError

logger = logging.getLogger(__name__)

STATUS_BY_ERROR_CLASS = {
    ErrorClass.INVALID_PAYLOAD: 400,
    ErrorClass.NO_CREDENTIAL: 401,
    ErrorClass.UNAUTHORIZED: 401,
    ErrorClass.TARGET_NOT_FOUND: 404,
    ErrorClass.TARGET_NOT_RESOLVABLE: 404,
    ErrorClass.REFRESH_FAILED: 502,
    ErrorClass.PROVIDER_REJECTED: 502,
    ErrorClass.NETWORK_TIMEOUT: 504,
    ErrorClass.CREDENTIAL_UNDECRYPTABLE: 500,
    ErrorClass.INTERNAL_ERROR: 500,
}


def http_error_for(error: RelayError) -> HTTPException:
    status_code = STATUS_BY_ERROR_CLASS.get(error.error_class, 500)
    logger.error(f"Request failed with {error.error_class.value}: {error}")
    return HTTPException(
        status_code=status_code,
        detail={"error": str(error), "errorClass": error.error_class.value},
    )
