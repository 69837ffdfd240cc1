from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from institute_api import admissions, events, models, schemas, uploads
from institute_api.auth import require_roles
from institute_api.database import get_db
from institute_api.models import Role

router = APIRouter(prefix="/api/admissions", tags=["admissions"])

READ_ROLES = (
    Role.SUPER_ADMIN, Role.ADMIN, Role.BRANCH_ADMIN, Role.RECEPTION,
    Role.TEACHER, Role.MARKETING_STAFF, Role.STUDENT,
)
EDIT_ROLES = (Role.SUPER_ADMIN, Role.ADMIN, Role.BRANCH_ADMIN, Role.RECEPTION)
DELETE_ROLES = (Role.SUPER_ADMIN, Role.ADMIN, Role.BRANCH_ADMIN)


async def admission_submission(request: Request):
    """Parse a JSON body or a multipart form (sections as JSON strings, optional ``photo``)."""
    photo = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        data = {}
        for key, value in form.multi_items():
            if key == "photo":
                if isinstance(value, UploadFile) and value.filename:
                    photo = value
                continue
            data[key] = value
    else:
        try:
            data = await request.json()
        except ValueError:
            raise RequestValidationError([{"loc": ("body",), "msg": "Invalid JSON body", "type": "json_invalid"}])

    try:
        payload = schemas.AdmissionCreate.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    return payload, photo


def _envelope(message: str, admission: models.Admission) -> dict:
    return {"message": message, "admission": admission}


@router.post("", response_model=schemas.AdmissionEnvelope, status_code=201)
def create_admission(
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(require_roles(*READ_ROLES)),
    submission=Depends(admission_submission),
    db: Session = Depends(get_db),
):
    payload, photo = submission
    photo_url = uploads.save_admission_photo(photo) if photo is not None else None
    try:
        admission = admissions.create_admission(db, payload, current_user, photo_url=photo_url)
    except Exception:
        if photo_url:
            uploads.delete_upload(photo_url)
        raise

    events.emit(background_tasks, "admission.events.created", "AdmissionCreated", {
        "admission_id": admission.id,
        "receipt_number": admission.receipt_number,
        "student_id": admission.student_id,
        "course_id": admission.course_id,
        "branch_id": admission.branch_id,
        "total_fees": admission.total_fees,
    })
    return _envelope("Admission created successfully", admission)


@router.get("", response_model=schemas.AdmissionPage)
def list_admissions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    branch_id: Optional[int] = Query(None, alias="branchId"),
    course_id: Optional[int] = Query(None, alias="courseId"),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*READ_ROLES)),
):
    results, pagination = admissions.list_admissions(
        db, current_user, page=page, limit=limit, branch_id=branch_id, course_id=course_id, status=status
    )
    return {"admissions": results, "pagination": pagination}


@router.get("/stats", response_model=schemas.AdmissionStats)
def admission_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*READ_ROLES)),
):
    return admissions.admission_stats(db, current_user)


@router.get("/student/{student_id}", response_model=List[schemas.AdmissionOut])
def student_admissions(
    student_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*READ_ROLES)),
):
    return admissions.list_student_admissions(db, student_id, current_user)


@router.get("/{admission_id}", response_model=schemas.AdmissionOut)
def get_admission(
    admission_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*READ_ROLES)),
):
    return admissions.get_admission(db, admission_id, current_user)


@router.put("/{admission_id}", response_model=schemas.AdmissionEnvelope)
def update_admission(
    admission_id: int,
    patch: schemas.AdmissionUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*EDIT_ROLES)),
):
    admission = admissions.update_admission(db, admission_id, patch, current_user)
    return _envelope("Admission updated successfully", admission)


@router.delete("/{admission_id}", response_model=schemas.MessageOut)
def delete_admission(
    admission_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*DELETE_ROLES)),
):
    admissions.delete_admission(db, admission_id, current_user)
    return {"message": "Admission deleted successfully"}
