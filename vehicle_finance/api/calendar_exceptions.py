"""
Calendar exception endpoints
"""

from dataclasses import asdict
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from .system import LedgerSystem, get_ledger_system
from .schemas import CreateCalendarExceptionRequest, parse_request_date
from ..exceptions import ValidationError
from ..storage import to_storage_value
from ..skipped_dates import ExceptionScope


router = APIRouter()


def _scope(value: str) -> ExceptionScope:
    try:
        return ExceptionScope(value.upper())
    except ValueError:
        raise ValidationError(f"Unknown exception scope: {value}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_calendar_exception(
    request: CreateCalendarExceptionRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a holiday, closure or loan-specific pause"""
    skipped_dates = None
    if request.skipped_dates:
        skipped_dates = [parse_request_date(d, "skipped_dates") for d in request.skipped_dates]

    exception = system.exception_manager.create_exception(
        store_id=request.store_id,
        scope=_scope(request.scope),
        title=request.title,
        start_date=parse_request_date(request.start_date, "start_date"),
        end_date=parse_request_date(request.end_date, "end_date"),
        loan_id=request.loan_id,
        vehicle_type=request.vehicle_type,
        category=request.category,
        description=request.description,
        skipped_dates=skipped_dates,
        auto_generate=request.auto_generate,
        days_unavailable=request.days_unavailable,
        installments_to_subtract=request.installments_to_subtract,
        is_recurring=request.is_recurring,
        recurring_day=request.recurring_day,
        recurring_months=request.recurring_months,
        created_by_id=request.created_by_id
    )
    return exception.to_dict()


@router.get("")
async def list_calendar_exceptions(
    store_id: Optional[str] = None,
    loan_id: Optional[str] = None,
    scope: Optional[str] = None,
    is_active: Optional[bool] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List calendar exceptions, newest first"""
    exceptions = system.exception_manager.list_exceptions(
        store_id=store_id,
        loan_id=loan_id,
        scope=_scope(scope) if scope else None,
        is_active=is_active
    )
    return {"exceptions": [e.to_dict() for e in exceptions], "count": len(exceptions)}


@router.post("/{exception_id}/deactivate")
async def deactivate_calendar_exception(
    exception_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Stop an exception from producing skipped dates"""
    return system.exception_manager.deactivate_exception(exception_id).to_dict()


@router.delete("/{exception_id}")
async def delete_calendar_exception(
    exception_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a calendar exception"""
    exception = system.exception_manager.delete_exception(exception_id)
    return {"id": exception.id, "message": "Calendar exception deleted successfully"}


@router.get("/summary")
async def summarize_calendar_exceptions(
    loan_ids: List[str] = Query(...),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Loan-specific exception counts per loan"""
    summaries = system.exception_manager.summary_for_loans(loan_ids)
    return {loan_id: to_storage_value(asdict(summary)) for loan_id, summary in summaries.items()}
