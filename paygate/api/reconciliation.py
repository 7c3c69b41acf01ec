"""
Reconciliation endpoint.

POST /reconciliations : Pull a provider's settlements for a date range and
                        apply any the webhook path missed.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, model_validator

from paygate.api.deps import get_reconciler
from paygate.engine.reconciler import Reconciler
from paygate.models.enums import ProviderName

router = APIRouter(prefix="/reconciliations", tags=["reconciliation"])


class ReconciliationRequest(BaseModel):
    provider: ProviderName
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_range(self):
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class ReconciliationOut(BaseModel):
    provider: ProviderName
    start: datetime
    end: datetime
    fetched: int
    applied: int
    duplicates: int
    ignored: int
    failed: int


@router.post("", response_model=ReconciliationOut)
async def reconcile(body: ReconciliationRequest, reconciler: Reconciler = Depends(get_reconciler)):
    if body.provider not in reconciler.registry:
        raise HTTPException(status_code=404, detail=f"Provider not registered: {body.provider.value}")
    summary = await reconciler.run(body.provider, body.start, body.end)
    return ReconciliationOut(
        provider=summary.provider,
        start=summary.start,
        end=summary.end,
        fetched=summary.fetched,
        applied=summary.applied,
        duplicates=summary.duplicates,
        ignored=summary.ignored,
        failed=summary.failed,
    )
