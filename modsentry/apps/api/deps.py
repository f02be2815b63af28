from __future__ import annotations

from typing import AsyncGenerator, Callable

from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from modsentry.persistence.db import get_session
from modsentry.services.registry import ServiceRegistry


# Identity and sessions are issued upstream; this layer only reads the asserted principal.
ROLE_ORDER: dict[str, int] = {
    "member": 1,
    "moderator": 2,
    "admin": 3,
}


class Principal(BaseModel):
    actor_id: str
    role: str


def normalize_role(role: str) -> str:
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, minimum_role: str) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services


async def get_principal(
    x_actor_id: str | None = Header(default=None),
    x_role: str | None = Header(default=None),
) -> Principal:
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Missing X-Actor-Id header"},
        )
    try:
        role = normalize_role(x_role or "member")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": str(exc)},
        ) from exc
    return Principal(actor_id=x_actor_id, role=role)


def require_role(minimum_role: str) -> Callable[..., Principal]:
    async def _dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "AUTH_FORBIDDEN", "message": f"{minimum_role} role required"},
            )
        return principal

    return _dependency
