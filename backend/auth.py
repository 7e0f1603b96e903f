from jose import JWTError, jwt
from typing import Optional, Dict
import os

# Access tokens are issued by the hosted auth provider; we only verify them.
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")

def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
        return payload
    except JWTError:
        return None

def user_from_claims(payload: Dict) -> Optional[Dict]:
    """Map provider claims to the user identity the services work with."""
    user_id = payload.get("sub")
    if not user_id:
        return None
    email = (payload.get("email") or "").strip().lower() or None
    return {"user_id": user_id, "email": email}
