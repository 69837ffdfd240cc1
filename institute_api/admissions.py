"""Admission records: creation, scoped reads, merge-patch updates and stats."""
import logging
import math
from datetime import date
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session, joinedload

from institute_api import models, receipts, schemas, uploads
from institute_api.errors import NotFoundError, PermissionDenied, ValidationFailed
from institute_api.installments import build_schedule, split_fees
from institute_api.models import PaymentStatus, Role
from institute_api.scoping import AccessScope

logger = logging.getLogger(__name__)

SECTION_FIELDS = {
    "personal_details": models.Admission.PERSONAL_FIELDS,
    "address": models.Admission.ADDRESS_FIELDS,
    "course_details": models.Admission.COURSE_FIELDS,
    "payment_details": models.Admission.PAYMENT_FIELDS,
}


def _populated(db: Session):
    return db.query(models.Admission).options(
        joinedload(models.Admission.student),
        joinedload(models.Admission.created_by),
        joinedload(models.Admission.course),
        joinedload(models.Admission.branch),
    )


def create_admission(
    db: Session,
    payload: schemas.AdmissionCreate,
    actor: models.User,
    photo_url: Optional[str] = None,
    today: Optional[date] = None,
) -> models.Admission:
    student_id = payload.student_id
    if actor.role == Role.STUDENT:
        if student_id is not None and student_id != actor.id:
            raise PermissionDenied("Students can only submit their own admission")
        student_id = actor.id
    if student_id is None:
        raise ValidationFailed(
            "Validation failed", errors=[{"field": "studentId", "message": "Field required"}]
        )

    if db.get(models.User, student_id) is None:
        raise NotFoundError("Student")
    course = db.get(models.Course, payload.course_details.course_id)
    if course is None:
        raise NotFoundError("Course")
    branch = db.get(models.Branch, payload.course_details.branch_id)
    if branch is None:
        raise NotFoundError("Branch")

    personal = payload.personal_details
    address = payload.address
    payment = payload.payment_details
    # the course record is authoritative for fees and duration
    total_fees = course.fees or 0

    admission = models.Admission(
        receipt_number=receipts.admission_receipt(db, today),
        student_id=student_id,
        created_by_id=actor.id,
        full_name=personal.full_name,
        mobile_number=personal.mobile_number,
        email_id=personal.email_id,
        date_of_birth=personal.date_of_birth,
        gender=personal.gender,
        photo_url=photo_url,
        address_line1=address.address_line1,
        address_line2=address.address_line2,
        landmark=address.landmark,
        city=address.city,
        district=address.district,
        pincode=address.pincode,
        state=address.state,
        course_id=course.id,
        batch_id=payload.course_details.batch_id,
        branch_id=branch.id,
        course_duration=f"{course.duration} months" if course.duration else "6 months",
        course_fees=total_fees,
        payment_type=payment.payment_type,
        total_fees=total_fees,
        paid_amount=0,
        pending_amount=total_fees,
        payment_status=PaymentStatus.PENDING,
        registration_fees=payment.registration_fees,
        payment_mode=payment.payment_mode,
        transaction_id=payment.transaction_id,
        number_of_installments=payment.number_of_installments,
        installment_amount=payment.installment_amount,
    )
    db.add(admission)
    db.flush()

    if payment.payment_type == "EMI" and payment.number_of_installments:
        if not admission.installment_amount:
            admission.installment_amount = split_fees(total_fees, payment.number_of_installments)
        db.add_all(
            build_schedule(
                admission.id,
                payment.number_of_installments,
                admission.installment_amount,
                today or date.today(),
            )
        )

    db.commit()
    logger.info(
        "Created admission id=%s receipt=%s student=%s course=%s branch=%s",
        admission.id, admission.receipt_number, student_id, course.id, branch.id,
    )
    return get_admission(db, admission.id, actor)


def list_admissions(
    db: Session,
    actor: models.User,
    page: int = 1,
    limit: int = 10,
    branch_id: Optional[int] = None,
    course_id: Optional[int] = None,
    status: Optional[str] = None,
):
    scope = AccessScope.for_actor(actor).narrow(branch_id)

    def filtered(query):
        query = scope.admissions(query)
        if course_id is not None:
            query = query.filter(models.Admission.course_id == course_id)
        if status:
            query = query.filter(models.Admission.status == status)
        return query

    total = filtered(db.query(models.Admission)).count()
    admissions = (
        filtered(_populated(db))
        .order_by(models.Admission.created_at.desc(), models.Admission.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    pagination = {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}
    return admissions, pagination


def list_student_admissions(db: Session, student_id: int, actor: models.User):
    if actor.role == Role.STUDENT and actor.id != student_id:
        raise PermissionDenied("Access denied")
    query = AccessScope.for_actor(actor).admissions(_populated(db))
    return (
        query.filter(models.Admission.student_id == student_id)
        .order_by(models.Admission.created_at.desc(), models.Admission.id.desc())
        .all()
    )


def get_admission(db: Session, admission_id: int, actor: models.User) -> models.Admission:
    admission = (
        AccessScope.for_actor(actor)
        .admissions(_populated(db))
        .filter(models.Admission.id == admission_id)
        .first()
    )
    if admission is None:
        raise NotFoundError("Admission")
    return admission


def update_admission(
    db: Session, admission_id: int, patch: schemas.AdmissionUpdate, actor: models.User
) -> models.Admission:
    """Shallow-merge the nested sections, overwrite everything else.

    Derived payment fields are not recomputed here.
    """
    admission = get_admission(db, admission_id, actor)
    changes = patch.model_dump(exclude_unset=True, by_alias=False)

    if patch.student_id is not None and db.get(models.User, patch.student_id) is None:
        raise NotFoundError("Student")
    if patch.course_details is not None:
        if patch.course_details.course_id is not None and db.get(models.Course, patch.course_details.course_id) is None:
            raise NotFoundError("Course")
        if patch.course_details.branch_id is not None and db.get(models.Branch, patch.course_details.branch_id) is None:
            raise NotFoundError("Branch")

    for key, value in changes.items():
        if value is None:
            continue
        if key in SECTION_FIELDS:
            section = getattr(patch, key).model_dump(exclude_unset=True, by_alias=True)
            for field, field_value in section.items():
                column = SECTION_FIELDS[key][field]
                # null only clears optional columns
                if field_value is None and not models.Admission.__table__.c[column].nullable:
                    continue
                setattr(admission, column, field_value)
        else:
            setattr(admission, key, value)

    if not AccessScope.for_actor(actor).allows(admission):
        db.rollback()
        raise PermissionDenied("Access denied. Admission would move outside your branch.")

    db.commit()
    logger.info("Updated admission id=%s fields=%s", admission.id, sorted(changes))
    return get_admission(db, admission_id, actor)


def delete_admission(db: Session, admission_id: int, actor: models.User):
    admission = get_admission(db, admission_id, actor)
    photo_url = admission.photo_url

    db.query(models.Installment).filter(models.Installment.admission_id == admission.id).delete()
    db.query(models.Payment).filter(models.Payment.admission_id == admission.id).delete()
    db.delete(admission)
    db.commit()

    if photo_url:
        uploads.delete_upload(photo_url)
    logger.info("Deleted admission id=%s", admission_id)


def admission_stats(db: Session, actor: models.User) -> dict:
    scope = AccessScope.for_actor(actor)
    A = models.Admission

    totals = scope.admissions(
        db.query(
            func.count(A.id),
            func.coalesce(func.sum(case((A.status == "Active", 1), else_=0)), 0),
            func.coalesce(func.sum(case((A.status == "Completed", 1), else_=0)), 0),
            func.coalesce(func.sum(A.registration_fees), 0),
        )
    ).one()

    per_course = (
        scope.admissions(
            db.query(models.Course.title, func.count(A.id), func.coalesce(func.sum(A.registration_fees), 0))
            .select_from(A)
            .join(models.Course, models.Course.id == A.course_id)
        )
        .group_by(models.Course.title)
        .order_by(func.count(A.id).desc(), models.Course.title)
        .all()
    )

    return {
        "stats": {
            "total_admissions": totals[0],
            "active_admissions": totals[1],
            "completed_admissions": totals[2],
            "total_revenue": totals[3],
        },
        "course_stats": [
            {"course": title, "count": count, "revenue": revenue} for title, count, revenue in per_course
        ],
    }
