"""Gateway orders, payment verification and the per-admission ledger.

Verification writes the payment row, the admission totals and the matching
installment in a single transaction; a failure anywhere rolls back all three.
"""
import logging
import math
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from institute_api import installments, models, receipts, schemas
from institute_api.errors import ConflictError, InvalidSignature, NotFoundError, PermissionDenied, ValidationFailed
from institute_api.gateway import RazorpayGateway
from institute_api.models import InstallmentStatus, PaymentMethod, PaymentStatus, TransactionStatus
from institute_api.scoping import AccessScope

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_payment_status(total_fees: float, paid_amount: float) -> str:
    if total_fees - paid_amount <= 0:
        return PaymentStatus.PAID
    if paid_amount > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


def apply_payment(admission: models.Admission, amount: float):
    admission.paid_amount = (admission.paid_amount or 0) + amount
    admission.pending_amount = max(0, admission.total_fees - admission.paid_amount)
    admission.payment_status = derive_payment_status(admission.total_fees, admission.paid_amount)


def _admission_for_payment(db: Session, admission_id: int, actor: models.User) -> models.Admission:
    admission = db.get(models.Admission, admission_id)
    if admission is None:
        raise NotFoundError("Admission")
    if not AccessScope.for_actor(actor).allows(admission):
        raise PermissionDenied("Unauthorized: You can only pay for your own admission")
    return admission


def _scoped_admission(db: Session, admission_id: int, actor: models.User) -> models.Admission:
    admission = (
        AccessScope.for_actor(actor)
        .admissions(db.query(models.Admission))
        .filter(models.Admission.id == admission_id)
        .first()
    )
    if admission is None:
        raise NotFoundError("Admission")
    return admission


def create_order(
    db: Session, gateway: RazorpayGateway, request: schemas.CreateOrderRequest, actor: models.User
) -> dict:
    admission = _admission_for_payment(db, request.admission_id, actor)

    if request.payment_type == "EMI":
        if not request.installment_no or request.installment_no < 1:
            raise ValidationFailed("Valid installment number is required for EMI payments")
        if request.installment_no > (admission.number_of_installments or 1):
            raise ValidationFailed("Invalid installment number")

    notes = {
        "admissionId": admission.id,
        "paymentType": request.payment_type,
        "studentId": admission.student_id,
        "installmentNo": request.installment_no,
    }
    receipt = f"receipt_{admission.id}_{int(time.time() * 1000)}"
    order = gateway.create_order(request.amount, receipt, notes)
    logger.info(
        "Created gateway order %s for admission id=%s type=%s amount=%s",
        order.get("id"), admission.id, request.payment_type, request.amount,
    )
    return {
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order.get("currency", gateway.currency),
        "receipt": order.get("receipt", receipt),
        "notes": order.get("notes", {}),
        "key_id": gateway.key_id,
    }


def _installment_for(db: Session, admission: models.Admission, request: schemas.VerifyPaymentRequest):
    if request.installment_id is not None:
        installment = db.get(models.Installment, request.installment_id)
        if installment is not None and installment.admission_id != admission.id:
            installment = None
    else:
        installment = (
            db.query(models.Installment)
            .filter(
                models.Installment.admission_id == admission.id,
                models.Installment.installment_no == request.installment_no,
            )
            .first()
        )
    if installment is None:
        raise NotFoundError("Installment")
    if installment.status == InstallmentStatus.PAID:
        raise ConflictError("Installment already paid")
    return installment


def verify_payment(
    db: Session, gateway: RazorpayGateway, request: schemas.VerifyPaymentRequest, actor: models.User
):
    if not gateway.verify_signature(
        request.razorpay_order_id, request.razorpay_payment_id, request.razorpay_signature
    ):
        logger.warning(
            "Signature mismatch for order=%s payment=%s admission=%s",
            request.razorpay_order_id, request.razorpay_payment_id, request.admission_id,
        )
        raise InvalidSignature()

    admission = _admission_for_payment(db, request.admission_id, actor)

    duplicate = (
        db.query(models.Payment.id)
        .filter(models.Payment.gateway_payment_id == request.razorpay_payment_id)
        .first()
    )
    if duplicate is not None:
        raise ConflictError("Payment already recorded")

    installment = None
    if request.payment_type == "EMI" and (request.installment_no or request.installment_id):
        installment = _installment_for(db, admission, request)

    now = utcnow()
    try:
        payment = models.Payment(
            admission_id=admission.id,
            student_id=admission.student_id,
            amount=request.amount,
            payment_date=now,
            payment_method=PaymentMethod.GATEWAY,
            payment_type=request.payment_type,
            gateway_order_id=request.razorpay_order_id,
            gateway_payment_id=request.razorpay_payment_id,
            gateway_signature=request.razorpay_signature,
            description=f"{request.payment_type} payment for admission {admission.receipt_number}",
            receipt_number=receipts.payment_receipt(db, now.date()),
            status=TransactionStatus.COMPLETED,
            collected_by_id=actor.id,
            branch_id=admission.branch_id,
            installment_number=installment.installment_no if installment else request.installment_no,
            is_verified=True,
            verified_at=now,
        )
        db.add(payment)
        db.flush()

        apply_payment(admission, request.amount)
        admission.transaction_id = request.razorpay_payment_id
        admission.gateway_order_id = request.razorpay_order_id

        if installment is not None:
            installment.status = InstallmentStatus.PAID
            installment.payment_id = payment.id
            installment.paid_date = now

        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Payment already recorded")
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Verified payment id=%s receipt=%s admission=%s amount=%s paid=%s pending=%s status=%s",
        payment.id, payment.receipt_number, admission.id, request.amount,
        admission.paid_amount, admission.pending_amount, admission.payment_status,
    )
    return payment, admission


def create_installments(
    db: Session, request: schemas.InstallmentsCreateRequest, actor: models.User
):
    admission = _scoped_admission(db, request.admission_id, actor)
    return installments.replace_schedule(
        db, admission, request.number_of_installments, request.installment_amount, request.start_date
    )


def pay_installment(db: Session, gateway: RazorpayGateway, installment_id: int, actor: models.User):
    installment = db.get(models.Installment, installment_id)
    if installment is None or not AccessScope.for_actor(actor).allows(installment.admission):
        raise NotFoundError("Installment")
    if installment.status == InstallmentStatus.PAID:
        raise ConflictError("Installment already paid")

    notes = {
        "paymentType": "EMI",
        "admissionId": installment.admission_id,
        "installmentNo": installment.installment_no,
        "installmentId": installment.id,
    }
    receipt = f"INST_{installment.id}_{int(time.time() * 1000)}"
    order = gateway.create_order(installment.amount, receipt, notes)
    logger.info("Created gateway order %s for installment id=%s", order.get("id"), installment.id)
    return order, installment


def get_admission_payments(db: Session, admission_id: int, actor: models.User):
    admission = _scoped_admission(db, admission_id, actor)
    return (
        db.query(models.Payment)
        .filter(models.Payment.admission_id == admission.id)
        .order_by(models.Payment.payment_date.desc(), models.Payment.id.desc())
        .all()
    )


def get_admission_installments(db: Session, admission_id: int, actor: models.User):
    admission = _scoped_admission(db, admission_id, actor)
    return installments.list_for_admission(db, admission.id)


def list_payments(
    db: Session,
    actor: models.User,
    page: int = 1,
    limit: int = 20,
    admission_id: Optional[int] = None,
    status: Optional[str] = None,
):
    query = AccessScope.for_actor(actor).payments(db.query(models.Payment))
    if admission_id is not None:
        query = query.filter(models.Payment.admission_id == admission_id)
    if status:
        query = query.filter(models.Payment.status == status)
    total = query.count()
    payments = (
        query.order_by(models.Payment.payment_date.desc(), models.Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return payments, {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


def get_payment(db: Session, payment_id: int, actor: models.User) -> models.Payment:
    payment = (
        AccessScope.for_actor(actor)
        .payments(db.query(models.Payment))
        .filter(models.Payment.id == payment_id)
        .first()
    )
    if payment is None:
        raise NotFoundError("Payment")
    return payment


def payment_stats(db: Session, actor: models.User, today: Optional[date] = None) -> dict:
    scope = AccessScope.for_actor(actor)
    P = models.Payment
    today = today or utcnow().date()
    completed = P.status == TransactionStatus.COMPLETED
    start = datetime.combine(today, datetime.min.time(), tzinfo=timezone.utc)
    on_today = and_(P.payment_date >= start, P.payment_date < start + timedelta(days=1))

    def scalar(query):
        return scope.payments(query).scalar() or 0

    methods = (
        scope.payments(db.query(P.payment_method, func.count(P.id), func.coalesce(func.sum(P.amount), 0)))
        .group_by(P.payment_method)
        .order_by(P.payment_method)
        .all()
    )
    return {
        "total_payments": scalar(db.query(func.count(P.id))),
        "total_revenue": scalar(db.query(func.sum(P.amount)).filter(completed)),
        "today_payments": scalar(db.query(func.count(P.id)).filter(on_today)),
        "today_revenue": scalar(db.query(func.sum(P.amount)).filter(completed, on_today)),
        "payment_methods": [
            {"method": method, "count": count, "total": total} for method, count, total in methods
        ],
    }


def sweep_overdue(db: Session, actor: models.User, today: Optional[date] = None) -> int:
    scope = AccessScope.for_actor(actor)
    return installments.mark_overdue(db, today, branch_id=scope.branch_id)
