from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request, HTTPException
from core.config import settings
from utils.deps import decode_actor

def get_actor_key(request: Request):
    token = request.headers.get("Authorization")
    if token:
        try:
            actor = decode_actor(token.replace("Bearer ", ""))
            return f"{actor.role.value}:{actor.id}"
        except HTTPException:
            # Fall back to the client address for bad tokens; the route rejects them
            pass

    return get_remote_address(request)

limiter = Limiter(
    key_func=get_actor_key,
    default_limits=["200/hour"],
    enabled=settings.ENV != "testing"
)
