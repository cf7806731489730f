# -*- coding: utf-8 -*-

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import JSONResponse

from config import (
    ADMIN_USERNAME,
    ADMIN_PASSWORD_HASH,
    ADMIN_COOKIE_NAME,
    ADMIN_COOKIE_SECURE,
    ADMIN_SESSION_MINUTES,
)
from app.api.deps import client_ip
from app.utils.auth import verify_password, create_admin_token, get_current_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin-auth"])


@router.post("/login")
def login_submit(
    request: Request,
    username: str = Form(...),
    password: str = Form(...)
):
    # same answer for unknown user and wrong password
    if username != ADMIN_USERNAME or not verify_password(password, ADMIN_PASSWORD_HASH):
        logger.warning("Failed admin login for %r from %s", username, client_ip(request))
        raise HTTPException(status_code=401, detail="Invalid username or password")

    logger.info("Admin %s logged in from %s", username, client_ip(request))
    response = JSONResponse({"status": "ok", "username": username})
    response.set_cookie(
        key=ADMIN_COOKIE_NAME,
        value=create_admin_token(username),
        httponly=True,
        secure=ADMIN_COOKIE_SECURE,
        samesite="strict",
        max_age=ADMIN_SESSION_MINUTES * 60,
        path="/",
    )
    return response


@router.post("/logout")
def logout():
    response = JSONResponse({"status": "logged_out"})
    response.delete_cookie(ADMIN_COOKIE_NAME, path="/")
    return response


@router.get("/me")
def whoami(admin: str = Depends(get_current_admin)):
    return {"username": admin}
