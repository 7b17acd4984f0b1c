from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from audience.core.config import settings
from audience.core.logging import company_id_ctx_var, user_code_ctx_var
from audience.core.security import decode_access_token


@dataclass(frozen=True)
class Operator:
    """The authenticated dashboard user a request acts for."""

    user_code: str
    company_id: str
    role: str = "operator"

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE


async def get_current_operator(request: Request) -> Operator:
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    token = auth.split(" ", 1)[1]
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type"
        )

    user_code = payload.get("sub")
    company_id = payload.get("company_id")
    if not user_code or not company_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    operator = Operator(
        user_code=str(user_code),
        company_id=str(company_id),
        role=str(payload.get("role") or "operator"),
    )
    request.state.user_code = operator.user_code
    request.state.company_id = operator.company_id
    user_code_ctx_var.set(operator.user_code)
    company_id_ctx_var.set(operator.company_id)
    return operator


async def require_admin(operator: Operator = Depends(get_current_operator)) -> Operator:
    if not operator.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator approval is required for this action",
        )
    return operator
