from typing import Optional
from fastapi import Header, HTTPException, status
from docrag.utils.logger import get_logger

logger = get_logger("docrag.core.security")

# Authentication happens upstream; the gateway forwards the verified user id.
async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> int:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    try:
        return int(x_user_id)
    except ValueError:
        logger.warning("Malformed user identity header", extra={"x_user_id": x_user_id})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )
