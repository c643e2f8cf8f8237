import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services.vouchers import vouchers


@celery_app.task(name="app.tasks.vouchers.expire_stale_vouchers")
def expire_stale_vouchers():
    session = SessionLocal()
    started = time.monotonic()
    status = "success"
    try:
        return vouchers.expire_stale(session)
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("voucher_expiry", status, time.monotonic() - started)
