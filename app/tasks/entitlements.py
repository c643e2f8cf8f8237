from app.celery_app import celery_app
from app.db import SessionLocal
from app.services.expiry import expiry_reconciler


@celery_app.task(name="app.tasks.entitlements.run_expiry_sweep")
def run_expiry_sweep():
    session = SessionLocal()
    try:
        return expiry_reconciler.run(session)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
