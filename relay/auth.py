from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def verify_token(request: Request, authorization: str = Header(None)):
    """Bearer JWT (HS256) check for operator endpoints."""
    secret = request.app.state.settings.jwt_secret
    if not secret or not authorization:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Unsupported auth scheme")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
