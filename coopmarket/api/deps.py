from typing import Optional

from fastapi import Header, HTTPException, status

from coopmarket.schemas.ledger import Actor, ActorRole


async def get_principal(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """The upstream auth layer identifies the caller through these two headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required",
        )
    try:
        role = ActorRole(x_actor_role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown actor role: {x_actor_role}",
        )
    return Actor(id=x_actor_id, role=role)
