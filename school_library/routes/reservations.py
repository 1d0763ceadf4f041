from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List, Optional
from school_library.models.enums import ReservationStatus
from school_library.models.user import User
from school_library.services.auth import get_current_user, require_staff, ensure_student_access, student_for_user
from school_library.services.library import LibraryService, get_library
from school_library.schemas.reservation import ReserveRequest, CancelRequest, ReservationResponse

router = APIRouter(prefix="/api/library/reservations", tags=["Library Reservations"])

@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    request: ReserveRequest,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Join the waiting list of a book with no free copy."""
    if current_user.is_staff:
        if request.student_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="student_id is required when staff reserve on behalf of a student"
            )
        student_id = request.student_id
    else:
        student = student_for_user(library.db, current_user)
        if student is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only students can reserve books"
            )
        if request.student_id is not None and request.student_id != student.student_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Students can only reserve books for themselves"
            )
        student_id = student.student_id

    reservation = library.reserve(request.book_id, student_id)
    return ReservationResponse.model_validate(reservation.to_dict())

@router.get("/students/{student_id}", response_model=List[ReservationResponse])
def get_student_reservations(
    student_id: int,
    reservation_status: Optional[ReservationStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    ensure_student_access(library.db, current_user, student_id)
    return [
        ReservationResponse.model_validate(r.to_dict())
        for r in library.student_reservations(student_id, reservation_status)
    ]

@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    reservation = library.get_reservation(reservation_id)
    ensure_student_access(library.db, current_user, reservation.student_id)
    return ReservationResponse.model_validate(reservation.to_dict())

@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: int,
    request: CancelRequest,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Cancel a pending or available reservation. Staff or the reserving student."""
    ensure_student_access(library.db, current_user, library.get_reservation(reservation_id).student_id)
    reservation = library.cancel_reservation(reservation_id, cancelled_by=current_user.user_id, reason=request.reason)
    return ReservationResponse.model_validate(reservation.to_dict())

@router.post("/{reservation_id}/fulfill", response_model=ReservationResponse)
def fulfill_reservation(
    reservation_id: int,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Mark a held reservation as collected."""
    return ReservationResponse.model_validate(library.fulfill_reservation(reservation_id).to_dict())
