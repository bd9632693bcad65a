"""
LiveKit JWT token generation for the subscriber agent
"""
import os
import time
from typing import Optional

try:
    import jwt
except ImportError:
    raise ImportError("pyjwt is required: pip install pyjwt")


# Environment variables for LiveKit configuration
LIVEKIT_URL = os.environ.get("LIVEKIT_WS_URL", "")
LIVEKIT_API_KEY = os.environ.get("LIVEKIT_API_KEY", "")
LIVEKIT_API_SECRET = os.environ.get("LIVEKIT_API_SECRET", "")

TOKEN_TTL = 60 * 60


def mint_subscriber_token(identity: str, room: str, name: Optional[str] = None,
                          ttl: int = TOKEN_TTL) -> str:
    """
    Mint a LiveKit access token that may only subscribe

    Args:
        identity: Participant identity of the subscriber agent
        room: Room name/ID
        name: Display name (optional)
        ttl: Lifetime in seconds

    Returns:
        JWT token string
    """
    now = int(time.time())

    grants = {
        "room": room,
        "roomJoin": True,
        "canPublish": False,
        "canPublishData": False,
        "canSubscribe": True,
        "hidden": True,
    }

    payload = {
        "iss": LIVEKIT_API_KEY,
        "sub": identity,
        "name": name or identity,
        "nbf": now - 5,  # 5s clock skew tolerance
        "exp": now + ttl,
        "video": grants
    }

    return jwt.encode(payload, LIVEKIT_API_SECRET, algorithm="HS256")


def is_livekit_configured() -> bool:
    """Check if LiveKit environment variables are set"""
    return bool(LIVEKIT_URL and LIVEKIT_API_KEY and LIVEKIT_API_SECRET)
