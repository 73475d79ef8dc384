"""Request-scoped values injected into route handlers"""
from typing import Optional
from fastapi import Header, HTTPException, status

from ..utils.logger import set_correlation_id
from ..utils.idgen import generate_correlation_id


async def get_correlation_id_dep(
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id")
) -> str:
    """Caller-supplied X-Correlation-Id, or a fresh COR- id"""
    correlation_id = x_correlation_id or generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


async def get_actor_id_dep(
    x_employee_id: Optional[str] = Header(None, alias="X-Employee-Id")
) -> str:
    """Acting employee from X-Employee-Id (set by the gateway); 401 when absent"""
    if not x_employee_id or not x_employee_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": {"code": "AUTHENTICATION_ERROR", "message": "X-Employee-Id header is missing"}}
        )
    return x_employee_id.strip()

