"""
Pydantic schemas for API requests and response helpers
"""

from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..storage import to_storage_value
from ..exceptions import ValidationError
from ..installments import Installment, CoveragePreview, PaymentPage
from ..coverage import CoverageStatus
from ..loans import Loan


def parse_request_date(value: Optional[str], field_name: str) -> Optional[date]:
    """ISO date from a request body; malformed input is a validation error"""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD)")


# Loan schemas
class CreateLoanRequest(BaseModel):
    store_id: str
    customer_id: str
    start_date: str  # ISO date string
    base_daily_rate: str = Field(..., description="Decimal amount per logical day as string")
    total_installments: str
    financed_amount: Optional[str] = None
    gps_daily_rate: str = "0"
    down_payment: str = "0"
    payment_frequency: str = Field("DAILY", description="DAILY, WEEKLY, BIWEEKLY or MONTHLY")
    vehicle_type: Optional[str] = None


# Installment schemas
class CoveragePreviewRequest(BaseModel):
    loan_id: str
    amount_total: str = Field(..., description="Base plus add-on amount as string")
    exclude_payment_id: Optional[str] = None


class RecordPaymentRequest(BaseModel):
    loan_id: str
    amount: str = Field(..., description="Base amount as string")
    gps_amount: str = "0"
    payment_date: Optional[str] = None  # ISO date string
    store_id: Optional[str] = None
    created_by_id: Optional[str] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    attachment_url: Optional[str] = None


class UpdatePaymentRequest(BaseModel):
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    attachment_url: Optional[str] = None
    payment_date: Optional[str] = None
    late_payment_date: Optional[str] = None
    advance_payment_date: Optional[str] = None
    updated_by_id: Optional[str] = None


# Calendar exception schemas
class CreateCalendarExceptionRequest(BaseModel):
    store_id: str
    scope: str = Field(..., description="LOAN_SPECIFIC or STORE_WIDE")
    title: str
    start_date: str
    end_date: Optional[str] = None
    loan_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    category: str = "HOLIDAY"
    description: Optional[str] = None
    skipped_dates: Optional[List[str]] = None
    auto_generate: bool = False
    days_unavailable: Optional[int] = None
    installments_to_subtract: Optional[float] = None
    is_recurring: bool = False
    recurring_day: Optional[int] = None
    recurring_months: Optional[List[int]] = None
    created_by_id: Optional[str] = None


def loan_response(loan: Loan) -> Dict[str, Any]:
    data = loan.to_dict()
    data["daily_rate"] = str(loan.daily_rate)
    data["installment_amount"] = str(loan.installment_amount)
    return data


def installment_response(installment: Installment) -> Dict[str, Any]:
    data = installment.to_dict()
    data["total_amount"] = str(installment.total_amount)
    return data


def status_response(status: CoverageStatus) -> Dict[str, Any]:
    data = to_storage_value(asdict(status))
    data["is_up_to_date"] = status.is_up_to_date
    return data


def preview_response(preview: CoveragePreview) -> Dict[str, Any]:
    return {
        "loan_id": preview.loan_id,
        "amount_total": str(preview.amount_total),
        "as_of": preview.as_of.isoformat(),
        "last_covered_date": preview.position.last_covered_date.isoformat(),
        "total_days_covered": str(preview.position.total_days_covered),
        "coverage": to_storage_value(asdict(preview.coverage)),
        "status": status_response(preview.status),
        "will_be_current_after_payment": preview.will_be_current_after_payment,
        "days_ahead_after_payment": str(preview.days_ahead_after_payment),
        "skipped_dates": to_storage_value(preview.skipped_dates),
        "skipped_dates_degraded": preview.skipped_dates_degraded
    }


def page_response(page: PaymentPage) -> Dict[str, Any]:
    return {
        "items": [
            {
                "payment": installment_response(item.payment),
                "status": status_response(item.status) if item.status else None
            }
            for item in page.items
        ],
        "total": page.total,
        "page": page.page,
        "page_size": page.page_size,
        "total_pages": page.total_pages
    }
