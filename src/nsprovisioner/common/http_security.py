"""Shared HTTP security helpers."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import HTTPException, Request, status


def require_bearer_token(request: Request, token: Optional[str]) -> None:
    """Reject the request unless it carries ``Authorization: Bearer <token>``.

    An empty or missing ``token`` disables the check.
    """
    if not token:
        return

    parts = request.headers.get("authorization", "").split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid Authorization header")
    if not hmac.compare_digest(parts[1].encode("utf-8"), token.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
