from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, status


async def current_actor(x_actor_id: Optional[str] = Header(None)) -> UUID:
    """
    Identity of the caller, taken from the X-Actor-Id header.

    Authentication happens upstream; this only makes sure every stock
    mutation is attributed to someone.
    """
    raw = (x_actor_id or "").strip()
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Actor-Id header is required")
    try:
        return UUID(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Actor-Id must be a UUID")
