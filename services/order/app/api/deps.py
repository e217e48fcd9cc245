from app.db.session import SessionLocal
from app.scheduler import get_sweep
from app.services.notifier import NotificationSender, default_sender
from app.services.sweep import AutoCancelSweep

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_notifier() -> NotificationSender:
    return default_sender()

def get_auto_cancel_sweep() -> AutoCancelSweep:
    return get_sweep()
