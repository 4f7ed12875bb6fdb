import hmac

from fastapi import Header, HTTPException, Request


async def verify_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
    """Verify the X-Api-Key header against API_SERVER_API_KEY.

    Args:
        request (Request): The FastAPI request object (provides app.state).
        x_api_key (str | None): The value of the X-Api-Key header.

    Raises:
        HTTPException: 500 if no API key is configured, 401 if the header is missing or does not match.
    """
    helper_config = request.app.state.helper_config
    try:
        expected_key = helper_config.get_string_val("API_SERVER_API_KEY")
    except ValueError:
        request.app.state.logging.error("API_SERVER_API_KEY is not set, rejecting request.")
        raise HTTPException(status_code=500, detail="Server API key is not configured")
    if not x_api_key or not hmac.compare_digest(x_api_key, expected_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
