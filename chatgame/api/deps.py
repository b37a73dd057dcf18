from typing import Optional

from fastapi import Header


def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> Optional[int]:
    """
    Identity of the caller as established by the upstream auth gateway.
    Anonymous callers have none.
    """
    return x_user_id


def get_api_key(x_api_key: Optional[str] = Header(default=None)) -> Optional[str]:
    """Credential supplied by the caller to bill a new session against."""
    return x_api_key or None
