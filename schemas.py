from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LookupIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    description: str = Field(default="", max_length=200)
    occurred_at: datetime
    category_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    establishment_id: Optional[int] = None
