from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from institute_api import events, models, payments, schemas
from institute_api.auth import get_current_user, require_roles
from institute_api.database import get_db
from institute_api.gateway import RazorpayGateway, get_gateway
from institute_api.models import Role

router = APIRouter(prefix="/api/payments", tags=["payments"])

ALL_ROLES = Role.ALL
COLLECTION_ROLES = (Role.SUPER_ADMIN, Role.ADMIN, Role.BRANCH_ADMIN, Role.RECEPTION)
LEDGER_ROLES = COLLECTION_ROLES + (Role.ACCOUNTANT,)


@router.post("/create-order", response_model=schemas.OrderEnvelope)
def create_order(
    request: schemas.CreateOrderRequest,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    current_user: models.User = Depends(get_current_user),
):
    return {"success": True, "data": payments.create_order(db, gateway, request, current_user)}


@router.post("/verify", response_model=schemas.VerifyEnvelope)
def verify_payment(
    request: schemas.VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    current_user: models.User = Depends(get_current_user),
):
    payment, admission = payments.verify_payment(db, gateway, request, current_user)
    events.emit(background_tasks, "payment.events.confirmed", "PaymentConfirmed", {
        "payment_id": payment.id,
        "admission_id": admission.id,
        "student_id": admission.student_id,
        "amount": payment.amount,
        "payment_status": admission.payment_status,
    })
    return {
        "success": True,
        "message": "Payment verified and recorded successfully",
        "data": {
            "payment_id": payment.id,
            "receipt_number": payment.receipt_number,
            "admission_receipt_number": admission.receipt_number,
            "payment_status": admission.payment_status,
            "paid_amount": admission.paid_amount,
            "pending_amount": admission.pending_amount,
        },
    }


@router.get("/stats", response_model=schemas.PaymentStatsEnvelope)
def payment_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*LEDGER_ROLES)),
):
    return {"success": True, "stats": payments.payment_stats(db, current_user)}


@router.get("/admission/{admission_id}", response_model=schemas.PaymentList)
def admission_payments(
    admission_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*ALL_ROLES)),
):
    return {"success": True, "payments": payments.get_admission_payments(db, admission_id, current_user)}


@router.post("/installments", response_model=schemas.InstallmentList)
def create_installments(
    request: schemas.InstallmentsCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*COLLECTION_ROLES)),
):
    installments = payments.create_installments(db, request, current_user)
    events.emit(background_tasks, "installment.events.scheduled", "InstallmentsScheduled", {
        "admission_id": request.admission_id,
        "number_of_installments": request.number_of_installments,
        "installment_amount": request.installment_amount,
    })
    return {"success": True, "message": "Installments created successfully", "installments": installments}


@router.post("/installments/mark-overdue", response_model=schemas.OverdueSweepResult)
def mark_overdue(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*COLLECTION_ROLES)),
):
    return {"success": True, "updated": payments.sweep_overdue(db, current_user)}


@router.get("/installments/{admission_id}", response_model=schemas.InstallmentList)
def admission_installments(
    admission_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*ALL_ROLES)),
):
    return {"success": True, "installments": payments.get_admission_installments(db, admission_id, current_user)}


@router.post("/installments/{installment_id}/pay", response_model=schemas.InstallmentOrderEnvelope)
def pay_installment(
    installment_id: int,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    current_user: models.User = Depends(require_roles(*(COLLECTION_ROLES + (Role.STUDENT,)))),
):
    order, installment = payments.pay_installment(db, gateway, installment_id, current_user)
    return {"success": True, "order": order, "key": gateway.key_id, "installment": installment}


@router.get("", response_model=schemas.PaymentPage)
def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admission_id: Optional[int] = Query(None, alias="admissionId"),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*(LEDGER_ROLES + (Role.STUDENT,)))),
):
    results, pagination = payments.list_payments(
        db, current_user, page=page, limit=limit, admission_id=admission_id, status=status
    )
    return {"success": True, "payments": results, "pagination": pagination}


@router.get("/{payment_id}", response_model=schemas.PaymentEnvelope)
def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(*(LEDGER_ROLES + (Role.STUDENT,)))),
):
    return {"success": True, "payment": payments.get_payment(db, payment_id, current_user)}
