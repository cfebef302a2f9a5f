import asyncio
import datetime
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, status

from loki_check.config import settings
from loki_check.errors import (
    BackendError,
    BackendUnreachable,
    Cancelled,
    MalformedResponse,
)
from loki_check.logql import build_logql
from loki_check.loki import format_timestamp
from loki_check.schemas.logs import VerifyRequest, VerifyResponse
from loki_check.verifier import IngestionVerifier

logger = logging.getLogger(__name__)
router = APIRouter()


def get_verifier() -> IngestionVerifier:
    return IngestionVerifier()


@router.post("/verify", response_model=VerifyResponse)
async def verify_ingestion(
    payload: VerifyRequest,
    verifier: IngestionVerifier = Depends(get_verifier),
) -> VerifyResponse:
    """
    Check that a line containing ``substring`` reached Loki under ``selector``
    (or under the selector built from ``labels`` and ``filters``).

    The range query is retried while Loki catches up; a 200 with matched=false
    means Loki answered but the line is not there. 504 means ``timeout_seconds``
    ran out first.
    """
    deadline = (
        time.monotonic() + payload.timeout_seconds
        if payload.timeout_seconds is not None
        else None
    )

    try:
        selector = payload.selector
        if selector is None:
            selector = build_logql(payload.labels, payload.filters)
        lookback = (
            datetime.timedelta(minutes=payload.lookback_minutes)
            if payload.lookback_minutes is not None
            else None
        )
        query = verifier.build_query(selector, lookback)
        outcome = await asyncio.to_thread(
            verifier.verify_query,
            settings.loki_url,
            query,
            payload.substring,
            max_attempts=payload.max_attempts,
            retry_delay=payload.retry_delay_seconds,
            deadline=deadline,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except (BackendUnreachable, BackendError, MalformedResponse) as exc:
        logger.warning("[api] Verification failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    except Cancelled as exc:
        logger.warning("[api] Verification timed out: %s", exc)
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))

    return VerifyResponse(
        selector=query.selector,
        start=format_timestamp(query.start),
        end=format_timestamp(query.end),
        outcome=outcome,
    )
