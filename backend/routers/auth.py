import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import StaffClaims, issue_staff_token, require_session
from database.db import verify_staff_credentials

logger = logging.getLogger(__name__)

router = APIRouter()


class StaffLogin(BaseModel):
    username: str
    password: str


@router.post("/auth/login")
def staff_login(payload: StaffLogin):
    username = payload.username.strip()
    password = payload.password.strip()
    if not username or not password:
        raise HTTPException(status_code=400, detail="Username and password are required.")

    account = verify_staff_credentials(username, password)
    if not account:
        logger.warning("Rejected login for %r", username)
        raise HTTPException(status_code=401, detail="Invalid username or password.")

    token, claims = issue_staff_token(account["username"], account["role"])
    logger.info("%s %r signed in", account["role"], account["username"])
    return {
        "access_token": token,
        "token_type": "bearer",
        "username": claims["sub"],
        "role": claims["role"],
        "expires_at": claims["exp"],
        "expires_in": max(0, claims["exp"] - int(time.time())),
    }


@router.get("/auth/me")
def whoami(claims: StaffClaims = Depends(require_session)):
    return {
        "username": claims["sub"],
        "role": claims["role"],
        "issued_at": claims["iat"],
        "expires_at": claims["exp"],
    }
