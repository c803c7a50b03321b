"""Liveness and dependency status."""

import logging
from typing import Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from menubill.database.db import CurrentSession
from menubill.src.billing.container import BillingContainer
from .dependencies import get_billing

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(db: CurrentSession, billing: BillingContainer = Depends(get_billing)) -> Dict:
    status = {
        'status': 'ok',
        'database': 'ok',
        'stripe': 'enabled' if billing.settings.STRIPE_ENABLED else 'disabled',
        'crm': 'enabled' if billing.crm.configured else 'disabled',
    }
    try:
        await db.execute(text('SELECT 1'))
    except Exception as e:
        logger.error(f"[HEALTH] Database check failed: {e}")
        status.update(status='degraded', database='unavailable')
        return JSONResponse(status_code=503, content=status)
    return status
