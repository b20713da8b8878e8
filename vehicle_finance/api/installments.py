"""
Installment endpoints
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, status

from .system import LedgerSystem, get_ledger_system
from .schemas import (
    CoveragePreviewRequest, RecordPaymentRequest, UpdatePaymentRequest,
    installment_response, page_response, parse_request_date, preview_response
)
from ..loans import to_decimal
from ..installments import PaymentFilters


router = APIRouter()


def _decimal_param(value: Optional[str], name: str) -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value, name)


@router.post("/preview")
async def preview_coverage(
    request: CoveragePreviewRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Coverage a payment would buy, without recording it"""
    preview = system.installment_service.preview_coverage(
        loan_id=request.loan_id,
        amount_total=_decimal_param(request.amount_total, "amount_total"),
        exclude_payment_id=request.exclude_payment_id
    )
    return preview_response(preview)


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_payment(
    request: RecordPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record an installment payment"""
    installment = system.installment_service.record_payment(
        loan_id=request.loan_id,
        amount_base=_decimal_param(request.amount, "amount"),
        amount_addon=_decimal_param(request.gps_amount, "gps_amount"),
        payment_date=parse_request_date(request.payment_date, "payment_date"),
        store_id=request.store_id,
        created_by_id=request.created_by_id,
        notes=request.notes,
        payment_method=request.payment_method,
        attachment_url=request.attachment_url
    )
    return installment_response(installment)


@router.get("")
async def list_payments(
    loan_id: Optional[str] = None,
    store_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    vehicle_type: Optional[str] = None,
    payment_method: Optional[str] = None,
    is_late: Optional[bool] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    min_amount: Optional[str] = None,
    max_amount: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List payments, newest first, with live status on each loan's latest payment"""
    filters = PaymentFilters(
        loan_id=loan_id,
        store_id=store_id,
        customer_id=customer_id,
        vehicle_type=vehicle_type,
        payment_method=payment_method,
        is_late=is_late,
        date_from=parse_request_date(date_from, "date_from"),
        date_to=parse_request_date(date_to, "date_to"),
        min_amount=_decimal_param(min_amount, "min_amount"),
        max_amount=_decimal_param(max_amount, "max_amount"),
        page=page,
        page_size=page_size
    )
    return page_response(system.installment_service.list_payments_with_status(filters))


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get an installment"""
    return installment_response(system.installment_service.require_payment(payment_id))


@router.patch("/{payment_id}")
async def update_payment(
    payment_id: str,
    request: UpdatePaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Edit notes, method, attachment or dates of an installment"""
    changes = request.model_dump(exclude_unset=True)
    updated_by_id = changes.pop("updated_by_id", None)
    for name in ("payment_date", "late_payment_date", "advance_payment_date"):
        if name in changes:
            changes[name] = parse_request_date(changes[name], name)

    installment = system.installment_service.update_payment(
        payment_id, updated_by_id=updated_by_id, **changes
    )
    return installment_response(installment)


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete an installment and rebuild the loan's position"""
    installment = system.installment_service.delete_payment(payment_id)
    loan = system.loan_manager.require_loan(installment.loan_id)
    return {
        "deleted": installment_response(installment),
        "loan_status": loan.status.value,
        "last_covered_date": loan.last_covered_date.isoformat(),
        "message": "Installment deleted successfully"
    }
