from fastapi import APIRouter, Depends
from school_library.models.user import User
from school_library.services.auth import require_staff
from school_library.services.library import LibraryService, get_library
from school_library.services.notifications import notification_service
from school_library.services.scheduler import sweep_scheduler

router = APIRouter(prefix="/api/library/maintenance", tags=["Library Maintenance"])

@router.post("/overdue-sweep")
def run_overdue_sweep(
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Refresh the overdue fines of every outstanding past-due loan."""
    return {"refreshed": library.run_overdue_sweep()}

@router.post("/reservation-sweep")
def run_reservation_sweep(
    current_user: User = Depends(require_staff),
    library: LibraryService = Depends(get_library)
):
    """Expire uncollected and stale reservations and pass freed copies down the queues."""
    return {"expired": library.run_reservation_sweep()}

@router.get("/status")
def get_service_status(current_user: User = Depends(require_staff)):
    """Connection state of the notification sink and the sweep scheduler."""
    return {
        "notifications": {
            "connected": notification_service.is_connected,
            "running": notification_service.is_running(),
        },
        "sweepScheduler": {"running": sweep_scheduler.is_running()},
    }
