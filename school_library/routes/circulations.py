from fastapi import APIRouter, Depends, status
from typing import List
from school_library.models.user import User
from school_library.services.auth import get_current_user, require_staff, ensure_student_access
from school_library.services.library import LibraryService, get_library
from school_library.schemas.circulation import (
    IssueRequest, ReturnRequest, CirculationResponse, BorrowingLimitResponse
)
from school_library.utils.timezone import now_local

router = APIRouter(prefix="/api/library/circulations", tags=["Library Circulation"])

def _response(circulation, now) -> CirculationResponse:
    return CirculationResponse.model_validate(circulation.to_dict(now))

@router.post("", response_model=CirculationResponse, status_code=status.HTTP_201_CREATED)
def issue_book(
    request: IssueRequest,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Issue a book to a student. Called by library staff at the desk."""
    now = now_local()
    circulation = library.issue(
        request.book_id,
        request.student_id,
        current_user.user_id,
        due_date=request.due_date,
        condition=request.condition,
        now=now
    )
    return _response(circulation, now)

@router.get("/overdue", response_model=List[CirculationResponse])
def get_overdue_circulations(
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """All outstanding loans past their due date."""
    now = now_local()
    return [_response(c, now) for c in library.overdue_circulations(now)]

@router.get("/students/{student_id}/active", response_model=List[CirculationResponse])
def get_active_circulations(
    student_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Get all active loans of a student."""
    ensure_student_access(library.db, current_user, student_id)
    now = now_local()
    return [_response(c, now) for c in library.active_circulations(student_id)]

@router.get("/students/{student_id}/history", response_model=List[CirculationResponse])
def get_circulation_history(
    student_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Get loan history of a student."""
    ensure_student_access(library.db, current_user, student_id)
    now = now_local()
    return [_response(c, now) for c in library.circulation_history(student_id)]

@router.get("/students/{student_id}/limit", response_model=BorrowingLimitResponse)
def get_borrowing_limit(
    student_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    ensure_student_access(library.db, current_user, student_id)
    return BorrowingLimitResponse(**library.borrowing_limit(student_id))

@router.get("/{circulation_id}", response_model=CirculationResponse)
def get_circulation(
    circulation_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Get specific loan details, including days overdue."""
    circulation = library.get_circulation(circulation_id)
    ensure_student_access(library.db, current_user, circulation.student_id)
    return _response(circulation, now_local())

@router.post("/{circulation_id}/renew", response_model=CirculationResponse)
def renew_circulation(
    circulation_id: int,
    current_user: User = Depends(get_current_user),
    library: LibraryService = Depends(get_library)
):
    """Extend the due date by one borrowing period. Students may renew their own loans."""
    ensure_student_access(library.db, current_user, library.get_circulation(circulation_id).student_id)
    now = now_local()
    return _response(library.renew(circulation_id, now=now), now)

@router.post("/{circulation_id}/return", response_model=CirculationResponse)
def return_circulation(
    circulation_id: int,
    request: ReturnRequest,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Check a book back in, charging any overdue or damage fine."""
    now = now_local()
    circulation = library.return_book(circulation_id, current_user.user_id, condition=request.condition, now=now)
    return _response(circulation, now)

@router.post("/{circulation_id}/lost", response_model=CirculationResponse)
def mark_circulation_lost(
    circulation_id: int,
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Close a loan whose copy was lost and charge the replacement fine."""
    now = now_local()
    return _response(library.mark_lost(circulation_id, current_user.user_id, now=now), now)
