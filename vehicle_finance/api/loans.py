"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .system import LedgerSystem, get_ledger_system
from .schemas import CreateLoanRequest, loan_response, parse_request_date, status_response
from ..exceptions import ValidationError
from ..loans import LoanStatus, PaymentFrequency


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a loan and position its coverage"""
    try:
        frequency = PaymentFrequency(request.payment_frequency.upper())
    except ValueError:
        raise ValidationError(f"Unknown payment frequency: {request.payment_frequency}")

    loan = system.loan_manager.create_loan(
        store_id=request.store_id,
        customer_id=request.customer_id,
        start_date=parse_request_date(request.start_date, "start_date"),
        base_daily_rate=request.base_daily_rate,
        total_installments=request.total_installments,
        financed_amount=request.financed_amount,
        gps_daily_rate=request.gps_daily_rate,
        down_payment=request.down_payment,
        payment_frequency=frequency,
        vehicle_type=request.vehicle_type
    )
    # Applies any skipped dates already on the calendar
    system.installment_service.recompute_position(loan.id)
    return loan_response(system.loan_manager.require_loan(loan.id))


@router.get("")
async def list_loans(
    store_id: Optional[str] = None,
    loan_status: Optional[str] = None,
    include_archived: bool = False,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List loans"""
    try:
        status_filter = LoanStatus(loan_status.upper()) if loan_status else None
    except ValueError:
        raise ValidationError(f"Unknown loan status: {loan_status}")

    loans = system.loan_manager.list_loans(store_id=store_id, status=status_filter,
                                           include_archived=include_archived)
    return {"loans": [loan_response(loan) for loan in loans], "count": len(loans)}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get loan details"""
    return loan_response(system.loan_manager.require_loan(loan_id))


@router.get("/{loan_id}/status")
async def get_loan_status(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Days behind or ahead as of today"""
    return status_response(system.installment_service.loan_status(loan_id))


@router.get("/{loan_id}/skipped-dates")
async def get_skipped_dates(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Resolved skipped dates and the exceptions they come from"""
    system.loan_manager.require_loan(loan_id)
    skipped = system.resolver.resolve(loan_id)
    return {
        "loan_id": loan_id,
        "dates": [d.isoformat() for d in skipped.dates],
        "sources": [
            {**source, "dates": [d.isoformat() for d in source.get("dates", [])]}
            for source in skipped.source_descriptions
        ],
        "degraded": skipped.degraded,
        "error": skipped.error
    }


@router.post("/{loan_id}/recompute")
async def recompute_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Rebuild coverage and aggregates from payment history"""
    position = system.installment_service.recompute_position(loan_id)
    return {
        "loan_id": loan_id,
        "last_covered_date": position.last_covered_date.isoformat(),
        "total_days_covered": str(position.total_days_covered)
    }


@router.post("/{loan_id}/default")
async def mark_loan_defaulted(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Mark a loan defaulted (collections hook)"""
    return loan_response(system.loan_manager.mark_defaulted(loan_id))


@router.post("/{loan_id}/archive")
async def archive_loan(
    loan_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Hide a loan and its payments from listings"""
    return loan_response(system.loan_manager.archive_loan(loan_id))
