from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AccessCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: Optional[str] = Field(None, alias="transactionId")


class AccessCodeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    pin: str
    lock_id: str = Field(..., alias="lockId")
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")


class AccessCodeRevokeResponse(BaseModel):
    success: bool = True
    revoked: bool
