from core.database import SessionLocal
from typing import Annotated
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from jose import JWTError, jwt
from starlette import status
from core.config import settings
from core.permissions import Actor
from models.enums import Role

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


def decode_actor(token: str) -> Actor:
    """
    Turn a bearer token issued by the auth service into an Actor.

    Raises:
        HTTPException(401): Token invalid, expired, not an access token, or missing claims
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("id")
        user_role = payload.get("role")
        token_type = payload.get("type", "access")

        if user_id is None or user_role is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Could not validate credentials.")

        if token_type != "access":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Invalid token type. Access token required.")

        return Actor(id=int(user_id), role=Role(user_role))

    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Could not validate credentials.")


def get_current_actor(token: Annotated[str, Depends(OAuth2PasswordBearer(tokenUrl="auth/token"))]) -> Actor:
    return decode_actor(token)


actor_dependency = Annotated[Actor, Depends(get_current_actor)]
