from typing import Dict

from fastapi import Depends, HTTPException, status

from admission_engine.auth.dependencies import get_current_user
from admission_engine.auth.schemas import CurrentUser


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.

    Example:
        Depends(check_permission("admissions", "update"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if current_user.role == "SUPER_ADMIN":
            return
        permissions: Dict[str, Dict[str, bool]] = current_user.permissions or {}
        if not permissions.get(module, {}).get(action, False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker
