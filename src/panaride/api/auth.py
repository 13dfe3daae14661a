import secrets

from fastapi import Header, HTTPException, status

from panaride.settings import APISettings


def verify_api_key(x_api_key: str = Header(...)) -> str:
    """Check the X-API-Key header against API_KEY."""
    expected = APISettings().key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API key not configured",
        )
    if not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    return x_api_key
