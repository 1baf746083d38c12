# forkpool/server/security.py
from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, Request


# --------------------------------------------------------------------------- #
# API-Key
# --------------------------------------------------------------------------- #
def api_key_auth(request: Request, x_api_key: str = Header(..., alias="X-API-Key")) -> None:
    """
    Valida que `X-API-Key` coincida con `app.state.config.api_key`.
    """
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise HTTPException(status_code=503, detail="Server is starting up, please wait.")

    if not secrets.compare_digest(x_api_key, config.api_key):
        raise HTTPException(status_code=401, detail="Bad API key")
