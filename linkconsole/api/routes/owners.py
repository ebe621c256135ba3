"""API routes for owner administration."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linkconsole.api.responses import domain_error_response, internal_error
from linkconsole.db.connection import get_db
from linkconsole.errors.domain import DomainError
from linkconsole.services.owner_service import OwnerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/owners", tags=["owners"])


@router.get("")
def list_owners(db: Session = Depends(get_db)):
    """All owners with their connection counts."""
    try:
        return OwnerService(db).list_owners()
    except Exception as e:
        return internal_error(e, "list owners")


def _set_active(db: Session, owner_id: str, is_active: bool):
    try:
        return OwnerService(db).set_active(owner_id, is_active)
    except DomainError as e:
        return domain_error_response(e, "update owner")
    except Exception as e:
        return internal_error(e, "update owner")


@router.post("/{owner_id}/activate")
def activate_owner(owner_id: str, db: Session = Depends(get_db)):
    return _set_active(db, owner_id, True)


@router.post("/{owner_id}/deactivate")
def deactivate_owner(owner_id: str, db: Session = Depends(get_db)):
    return _set_active(db, owner_id, False)
