# app/schemas/recovery.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RecoveryStats(BaseModel):
    abandoned: int = 0
    notified: int = 0
    recovered: int = 0
    lost: int = 0
    recovery_rate: float = Field(0.0, serialization_alias="recoveryRate")
    revenue: float = 0.0

    model_config = ConfigDict(populate_by_name=True)


class StoreScanResult(BaseModel):
    store_id: UUID
    imported: int = 0
    abandoned: int = 0
    notified: int = 0
    follow_up: int = 0
    recovered: int = 0
    lost: int = 0
    errors: int = 0


class ScanSummary(BaseModel):
    """Run-level summary returned by the cron endpoint."""

    stores: int = 0
    imported: int = 0
    abandoned: int = 0
    notified: int = 0
    follow_up: int = Field(0, serialization_alias="followUp")
    recovered: int = 0
    lost: int = 0
    errors: int = 0
    duration_seconds: float = Field(0.0, serialization_alias="durationSeconds")
    timestamp: datetime

    model_config = ConfigDict(populate_by_name=True)


class CronRunResponse(BaseModel):
    success: bool = True
    message: str = "Cart recovery process completed successfully"
    results: ScanSummary
    timestamp: datetime
