"""Map service-layer exceptions onto HTTP responses."""
from contextlib import contextmanager

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError

from app.rules.errors import NotFoundError, PolicyValidationError
from app.services.sla import SlaConflictError


@contextmanager
def service_errors():
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SlaConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except IntegrityError as exc:
        # a concurrent writer won the unique index between our check and insert
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Conflicts with an existing record; reload and retry.",
        ) from exc
    except PolicyValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": exc.field, "message": exc.message},
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
