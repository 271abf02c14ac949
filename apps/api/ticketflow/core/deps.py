"""FastAPI dependencies for database access and actor resolution."""

from typing import Generator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ticketflow.db.enums import AuthorType
from ticketflow.db.session import SessionLocal
from ticketflow.schemas.tickets import Actor


# Header names set by the upstream authentication layer
ACTOR_TYPE_HEADER = "X-Actor-Type"
ACTOR_NAME_HEADER = "X-Actor-Name"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(
    x_actor_type: str | None = Header(None, alias=ACTOR_TYPE_HEADER),
    x_actor_name: str | None = Header(None, alias=ACTOR_NAME_HEADER),
) -> Actor:
    """
    Resolve the calling actor from headers supplied by the auth layer.

    Raises:
        HTTPException 401: actor headers missing or unrecognised
    """
    if not x_actor_type:
        raise HTTPException(status_code=401, detail="Actor not identified")
    try:
        actor_type = AuthorType(x_actor_type.strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown actor type: {x_actor_type}")
    return Actor(type=actor_type, name=(x_actor_name or actor_type.value).strip())


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    """
    Require an admin actor.

    Raises:
        HTTPException 403: actor is not an admin
    """
    if actor.type != AuthorType.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor


def require_actor_types(allowed_types: list):
    """
    Dependency factory for actor-type authorization.

    Usage:
        @router.get("/stats", dependencies=[Depends(require_actor_types([AuthorType.ADMIN]))])
    """
    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.type not in allowed_types:
            raise HTTPException(
                status_code=403,
                detail=f"Actor type '{actor.type.value}' not authorized for this action",
            )
        return actor
    return dependency


# Admins, agents and the system itself; everyone except reporters
require_staff = require_actor_types([AuthorType.ADMIN, AuthorType.AGENT, AuthorType.SYSTEM])
