"""Request-scoped caller context.

Authentication happens upstream (API gateway / auth middleware). The gateway
forwards the verified identity as headers and every service call receives an
explicit RequestContext; nothing here keeps process-wide token state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)

ADMIN_ROLES = {"admin", "owner"}


@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller for one request"""

    workspace_id: str
    user_id: str
    role: str = "agent"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def get_request_context(
    x_workspace_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> RequestContext:
    """Build the caller context from gateway-supplied headers"""
    if not x_workspace_id or not x_user_id:
        logger.warning("Request rejected: missing workspace or user identity headers")
        raise HTTPException(status_code=401, detail="Not authenticated")

    return RequestContext(
        workspace_id=x_workspace_id,
        user_id=x_user_id,
        role=(x_user_role or "agent").lower(),
    )
