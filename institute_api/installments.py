# institute_api/installments.py
import logging
from datetime import date
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from institute_api import models
from institute_api.models import InstallmentStatus

logger = logging.getLogger(__name__)


def split_fees(total_fees: float, number_of_installments: int) -> float:
    return round(total_fees / number_of_installments, 2)


def build_schedule(
    admission_id: int, number_of_installments: int, installment_amount: float, start: date
) -> List[models.Installment]:
    """Installment i falls due i months after ``start``."""
    return [
        models.Installment(
            admission_id=admission_id,
            installment_no=i,
            amount=installment_amount,
            due_date=start + relativedelta(months=i),
            status=InstallmentStatus.UNPAID,
            late_fees=0,
        )
        for i in range(1, number_of_installments + 1)
    ]


def replace_schedule(
    db: Session,
    admission: models.Admission,
    number_of_installments: int,
    installment_amount: float,
    start: Optional[date] = None,
) -> List[models.Installment]:
    """Drop any existing rows for the admission and insert a fresh 1..N schedule."""
    if start is None:
        start = admission.created_at.date() if admission.created_at else date.today()

    db.query(models.Installment).filter(models.Installment.admission_id == admission.id).delete(
        synchronize_session=False
    )
    # flush the delete before the inserts so the (admission, no) constraint holds
    db.flush()
    installments = build_schedule(admission.id, number_of_installments, installment_amount, start)
    db.add_all(installments)

    admission.number_of_installments = number_of_installments
    admission.installment_amount = installment_amount
    db.commit()
    logger.info(
        "Scheduled %d installments of %s for admission id=%s",
        number_of_installments, installment_amount, admission.id,
    )
    return list_for_admission(db, admission.id)


def list_for_admission(db: Session, admission_id: int) -> List[models.Installment]:
    return (
        db.query(models.Installment)
        .filter(models.Installment.admission_id == admission_id)
        .order_by(models.Installment.installment_no)
        .all()
    )


def mark_overdue(db: Session, today: Optional[date] = None, branch_id: Optional[int] = None) -> int:
    """Move UNPAID installments whose due date has passed to OVERDUE."""
    today = today or date.today()
    query = db.query(models.Installment).filter(
        models.Installment.status == InstallmentStatus.UNPAID,
        models.Installment.due_date < today,
    )
    if branch_id is not None:
        query = query.join(models.Admission, models.Admission.id == models.Installment.admission_id).filter(
            models.Admission.branch_id == branch_id
        )
    overdue = query.all()
    for installment in overdue:
        installment.status = InstallmentStatus.OVERDUE
    db.commit()
    logger.info("Marked %d installments overdue as of %s", len(overdue), today)
    return len(overdue)
