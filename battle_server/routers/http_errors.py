from fastapi import HTTPException, status

from battle_server.domain.errors import (
    BattleError,
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    ResourceError,
    StateError,
    ValidationError,
)

STATUS_CODES = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StateError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ResourceError, status.HTTP_424_FAILED_DEPENDENCY),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(error: BattleError) -> HTTPException:
    """Translate a rejection into the HTTPException the client sees"""
    for error_class, status_code in STATUS_CODES:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=error.to_detail())
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.to_detail()
    )
