import threading
import structlog
from app.core.config import settings
from app.db.session import SessionLocal
from app.services.notifier import default_sender
from app.services.sweep import AutoCancelSweep, make_gate

logger = structlog.get_logger(__name__)

_stop = threading.Event()
_thread = None
_sweep: AutoCancelSweep | None = None

def get_sweep() -> AutoCancelSweep:
    global _sweep
    if _sweep is None:
        _sweep = AutoCancelSweep(SessionLocal, gate=make_gate(), notifier=default_sender())
    return _sweep

def _run():
    sweep = get_sweep()
    while not _stop.is_set():
        try:
            sweep.run_if_due()
        except Exception:
            logger.exception("Auto-cancel sweep crashed")
        _stop.wait(settings.SWEEP_TICK_SECONDS)

def start():
    global _thread
    if _thread and _thread.is_alive():
        return
    _stop.clear()
    _thread = threading.Thread(target=_run, name="auto-cancel-sweep", daemon=True)
    _thread.start()

def stop():
    _stop.set()
