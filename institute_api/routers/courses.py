import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from institute_api import models, schemas
from institute_api.auth import require_roles
from institute_api.database import get_db
from institute_api.errors import ConflictError, NotFoundError
from institute_api.models import Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses", tags=["courses"])

WRITE_ROLES = (Role.SUPER_ADMIN, Role.ADMIN, Role.BRANCH_ADMIN)
DELETE_ROLES = (Role.SUPER_ADMIN, Role.ADMIN)


def _get_course(db: Session, course_id: int) -> models.Course:
    course = db.get(models.Course, course_id)
    if course is None:
        raise NotFoundError("Course")
    return course


def _branches(db: Session, branch_ids):
    branches = db.query(models.Branch).filter(models.Branch.id.in_(branch_ids)).all() if branch_ids else []
    if len(branches) != len(set(branch_ids)):
        raise NotFoundError("Branch")
    return branches


def _commit(db: Session):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Course code already exists")


@router.get("", response_model=schemas.CoursePage)
def list_courses(
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    level: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    q = db.query(models.Course).filter(models.Course.is_active.is_(True))
    if category and category != "All":
        q = q.filter(models.Course.category == category)
    if search:
        pattern = f"%{search}%"
        q = q.filter(
            or_(
                models.Course.title.ilike(pattern),
                models.Course.code.ilike(pattern),
                models.Course.description.ilike(pattern),
                models.Course.short_description.ilike(pattern),
            )
        )
    if status:
        q = q.filter(models.Course.status == status)
    if level:
        q = q.filter(models.Course.level == level)

    total = q.count()
    courses = (
        q.order_by(models.Course.created_at.desc(), models.Course.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "courses": courses,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.get("/{course_id}", response_model=schemas.CourseOut)
def get_course(course_id: int, db: Session = Depends(get_db)):
    return _get_course(db, course_id)


@router.post("", response_model=schemas.CourseEnvelope, status_code=201)
def create_course(
    course_in: schemas.CourseCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*WRITE_ROLES)),
):
    if db.query(models.Course).filter(models.Course.code == course_in.code).first():
        raise ConflictError("Course code already exists")

    branch_ids = course_in.branch_ids
    # a Branch Admin always creates courses for their own branch
    if current_user.role == Role.BRANCH_ADMIN:
        branch_ids = [current_user.branch_id] if current_user.branch_id else []

    course = models.Course(**course_in.model_dump(exclude={"branch_ids"}))
    course.branches = _branches(db, branch_ids)
    db.add(course)
    _commit(db)
    db.refresh(course)
    logger.info("Created course id=%s code=%s by user=%s", course.id, course.code, current_user.id)
    return {"message": "Course created successfully", "course": course}


@router.put("/{course_id}", response_model=schemas.CourseEnvelope)
def update_course(
    course_id: int,
    course_in: schemas.CourseUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*WRITE_ROLES)),
):
    course = _get_course(db, course_id)
    changes = course_in.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if value is None:
            continue
        if key == "branch_ids":
            course.branches = _branches(db, value)
        else:
            setattr(course, key, value)
    _commit(db)
    db.refresh(course)
    logger.info("Updated course id=%s fields=%s", course.id, sorted(changes))
    return {"message": "Course updated successfully", "course": course}


@router.delete("/{course_id}", response_model=schemas.MessageOut)
def delete_course(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*DELETE_ROLES)),
):
    course = _get_course(db, course_id)
    course.is_active = False
    db.commit()
    logger.info("Deactivated course id=%s", course_id)
    return {"message": "Course deleted successfully"}
