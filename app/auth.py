"""Caller identity for escrow endpoints."""

from fastapi import HTTPException, Header

from app.config import settings


def _presented_key(x_api_key: str | None, authorization: str | None) -> str | None:
    if x_api_key is not None:
        return x_api_key
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return None


async def current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None),
) -> str:
    """Authenticated user id supplied by the upstream session layer.

    When ESCROW_API_KEY is set the upstream must also present it, via
    X-API-Key or Authorization: Bearer. The user id is trusted as given;
    ownership is checked by the escrow service.
    """
    if settings.escrow_api_key is not None:
        if _presented_key(x_api_key, authorization) != settings.escrow_api_key:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")

    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()
