# institute_api/receipts.py
from datetime import date
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from institute_api import models

ADMISSION = "ADM"
PAYMENT = "PAY"


def next_sequence(db: Session, scope: str, year: int) -> int:
    """Atomically bump the per-year counter for ``scope`` and return the new value.

    Runs inside the caller's transaction; the row lock taken by the UPDATE is
    held until that transaction commits, so concurrent callers serialize.
    """
    stmt = (
        update(models.ReceiptCounter)
        .where(models.ReceiptCounter.scope == scope, models.ReceiptCounter.year == year)
        .values(value=models.ReceiptCounter.value + 1)
    )
    if db.execute(stmt).rowcount == 0:
        try:
            with db.begin_nested():
                db.add(models.ReceiptCounter(scope=scope, year=year, value=1))
            return 1
        except IntegrityError:
            # another transaction created the row first
            db.execute(stmt)

    return (
        db.query(models.ReceiptCounter.value)
        .filter(models.ReceiptCounter.scope == scope, models.ReceiptCounter.year == year)
        .scalar()
    )


def admission_receipt(db: Session, today: Optional[date] = None) -> str:
    year = (today or date.today()).year
    return f"ADM-{year}-{next_sequence(db, ADMISSION, year):06d}"


def payment_receipt(db: Session, today: Optional[date] = None) -> str:
    year = (today or date.today()).year
    return f"PAY{year}{next_sequence(db, PAYMENT, year):04d}"
