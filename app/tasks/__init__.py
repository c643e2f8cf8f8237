from app.tasks.entitlements import run_expiry_sweep
from app.tasks.vouchers import expire_stale_vouchers

__all__ = [
    "run_expiry_sweep",
    "expire_stale_vouchers",
]
