from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from school_library.models.enums import FineStatus
from school_library.models.user import User
from school_library.services.auth import get_current_user, require_staff, ensure_student_access
from school_library.services.library import LibraryService, get_library
from school_library.schemas.fine import PaymentRequest, WaiverRequest, FineResponse, OutstandingFinesResponse

router = APIRouter(prefix="/api/library/fines", tags=["Library Fines"])

@router.get("/students/{student_id}", response_model=List[FineResponse])
def get_student_fines(
    student_id: int,
    fine_status: Optional[FineStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    ensure_student_access(library.db, current_user, student_id)
    return [FineResponse.model_validate(f.to_dict()) for f in library.student_fines(student_id, fine_status)]

@router.get("/students/{student_id}/outstanding", response_model=OutstandingFinesResponse)
def get_outstanding_fines(
    student_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Unpaid fines of a student and their total."""
    ensure_student_access(library.db, current_user, student_id)
    fines, total = library.outstanding_fines(student_id)
    return OutstandingFinesResponse(
        studentId=str(student_id),
        fines=[FineResponse.model_validate(f.to_dict()) for f in fines],
        totalOutstanding=float(total),
        currency=library.policy.currency,
    )

@router.get("/{fine_id}", response_model=FineResponse)
def get_fine(
    fine_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    fine = library.get_fine(fine_id)
    ensure_student_access(library.db, current_user, fine.student_id)
    return FineResponse.model_validate(fine.to_dict())

@router.post("/{fine_id}/payments", response_model=FineResponse)
def pay_fine(
    fine_id: int,
    request: PaymentRequest,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Record a payment collected at the desk."""
    fine = library.record_payment(
        fine_id, request.amount, request.method,
        transaction_id=request.transaction_id, recorded_by=current_user.user_id
    )
    return FineResponse.model_validate(fine.to_dict())

@router.post("/{fine_id}/waivers", response_model=FineResponse)
def waive_fine(
    fine_id: int,
    request: WaiverRequest,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    fine = library.waive_fine(fine_id, request.amount, current_user.user_id, request.reason)
    return FineResponse.model_validate(fine.to_dict())
