# app/api/exchange.py
# -*- coding: utf-8 -*-

from fastapi import APIRouter, Request
from fastapi.responses import Response

from app.utils.exceptions import NotFoundError

router = APIRouter(tags=["exchange"])


@router.get("/exchange/{key}")
def take_exchange(key: str, request: Request):
    """One-time read; a second request for the same key is a 404."""
    payload = request.app.state.exchange.take(key)
    if payload is None:
        raise NotFoundError("Link expired or already used")
    return Response(content=payload, media_type="text/plain", headers={"Cache-Control": "no-store"})
