"""ADSYNC — Meta Account Routes (token check, account details)."""

from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, HTTPException, Query

from app.connectors.meta.client import MetaClient, MetaAPIError, TokenExpiredError
from app.core.logging import get_logger

logger = get_logger("api.meta")

router = APIRouter(prefix="/meta", tags=["Meta"])


async def _call_meta(
    client: MetaClient,
    call: Callable[[MetaClient], Awaitable[Any]],
    failure: str,
) -> Any:
    """Run one Graph call; 401 for a dead token, 400 for anything else."""
    try:
        return await call(client)
    except TokenExpiredError as e:
        raise HTTPException(
            status_code=401,
            detail={"success": False, "error": str(e), "token_expired": True},
        )
    except MetaAPIError as e:
        logger.warning(f"{failure}: {e}", extra={"status_code": e.status_code})
        raise HTTPException(status_code=400, detail=f"{failure}: {e}")
    finally:
        await client.close()


@router.get("/validate-token")
async def validate_token(access_token: Optional[str] = Query(None)):
    """Check a Meta access token (the configured one when omitted).

    Returns validity status, expiration, and granted scopes.
    """
    result = await _call_meta(
        MetaClient(access_token=access_token),
        lambda c: c.validate_token(),
        "Token validation failed",
    )
    return {"status": "success", **result}


@router.get("/account-info")
async def get_account_info(
    ad_account_id: Optional[str] = Query(None, description="act_... or bare id"),
    access_token: Optional[str] = Query(None),
):
    """Name, currency, timezone and balance of an ad account."""
    account = await _call_meta(
        MetaClient(access_token=access_token, ad_account_id=ad_account_id),
        lambda c: c.get_account_info(),
        "Failed to fetch account info",
    )
    return {"status": "success", "account": account}
