from __future__ import annotations

from pydantic import BaseModel


class ExpiryRunRead(BaseModel):
    scanned: int = 0
    expired: int = 0
    failed: int = 0
    reprovisioned: int = 0
    revoked: int = 0
