import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from institute_api import models, schemas
from institute_api.auth import require_roles
from institute_api.database import get_db
from institute_api.errors import ConflictError, NotFoundError
from institute_api.models import Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/branches", tags=["branches"])

ADMIN_ROLES = (Role.SUPER_ADMIN, Role.ADMIN)


def _get_branch(db: Session, branch_id: int) -> models.Branch:
    branch = db.get(models.Branch, branch_id)
    if branch is None:
        raise NotFoundError("Branch")
    return branch


def _commit(db: Session):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Branch code already exists")


# Public listing of active branches
@router.get("", response_model=List[schemas.BranchOut])
def list_branches(db: Session = Depends(get_db)):
    return (
        db.query(models.Branch)
        .filter(models.Branch.is_active.is_(True))
        .order_by(models.Branch.name)
        .all()
    )


@router.get("/{branch_id}", response_model=schemas.BranchOut)
def get_branch(branch_id: int, db: Session = Depends(get_db)):
    return _get_branch(db, branch_id)


@router.post("", response_model=schemas.BranchEnvelope, status_code=201)
def create_branch(
    branch_in: schemas.BranchCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*ADMIN_ROLES)),
):
    if db.query(models.Branch).filter(models.Branch.code == branch_in.code).first():
        raise ConflictError("Branch code already exists")

    branch = models.Branch(
        name=branch_in.name,
        code=branch_in.code,
        street=branch_in.address.street,
        city=branch_in.address.city,
        state=branch_in.address.state,
        pincode=branch_in.address.pincode,
        phone=branch_in.contact.phone,
        email=branch_in.contact.email,
        head_of_branch_id=branch_in.head_of_branch_id,
        establishment_date=branch_in.establishment_date,
        facilities=branch_in.facilities,
    )
    db.add(branch)
    _commit(db)
    db.refresh(branch)
    logger.info("Created branch id=%s code=%s by user=%s", branch.id, branch.code, current_user.id)
    return {"message": "Branch created successfully", "branch": branch}


@router.put("/{branch_id}", response_model=schemas.BranchEnvelope)
def update_branch(
    branch_id: int,
    branch_in: schemas.BranchUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*ADMIN_ROLES)),
):
    branch = _get_branch(db, branch_id)
    changes = branch_in.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if key in ("address", "contact"):
            for field, field_value in (value or {}).items():
                if field_value is not None:
                    setattr(branch, field, field_value)
        elif value is not None:
            setattr(branch, key, value)
    _commit(db)
    db.refresh(branch)
    logger.info("Updated branch id=%s fields=%s", branch.id, sorted(changes))
    return {"message": "Branch updated successfully", "branch": branch}


@router.delete("/{branch_id}", response_model=schemas.MessageOut)
def delete_branch(
    branch_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*ADMIN_ROLES)),
):
    branch = _get_branch(db, branch_id)
    branch.is_active = False
    db.commit()
    logger.info("Deactivated branch id=%s", branch_id)
    return {"message": "Branch deleted successfully"}
