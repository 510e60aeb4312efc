"""
Acting account for the current request.

Authentication itself is handled upstream (gateway or auth middleware), which
either sets request.state.account_id or forwards the X-Account-ID header.
Routes never take the actor from the request body.
"""

from fastapi import Request

from marketplace.platform.errors import AuthenticationError

ACCOUNT_HEADER = "X-Account-ID"


def get_account_id(request: Request) -> str:
    account_id = getattr(request.state, "account_id", None)
    if account_id:
        return account_id

    account_id = request.headers.get(ACCOUNT_HEADER, "").strip()
    if account_id:
        return account_id

    raise AuthenticationError("Missing account context")
