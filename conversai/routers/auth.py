# conversai/routers/auth.py
import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from conversai.api_utils import api_success, format_user
from conversai.auth.security import create_access_token, hash_password, verify_password
from conversai.db import crud
from conversai.deps import get_db

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterBody(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=8)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


@router.post("/register", status_code=201)
def register(body: RegisterBody, db: Session = Depends(get_db)):
    if crud.get_user_by_email(db, body.email):
        raise HTTPException(400, "User with this email already exists")
    user = crud.create_user(db, body.email, body.name, hash_password(body.password))
    logger.info("user_registered", user_id=user.id)
    return api_success({
        "user": format_user(user),
        "message": "Account created successfully. You can now sign in.",
    })


@router.post("/login")
def login(body: LoginBody, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, body.email)
    if not user or not verify_password(body.password, user.password_hash):
        logger.info("login_failed")
        raise HTTPException(401, "Invalid email or password")
    token = create_access_token(str(user.id))
    logger.info("login_succeeded", user_id=user.id)
    return api_success({
        "accessToken": token["token"],
        "tokenType": "bearer",
        "expiresAt": token["exp"],
        "user": format_user(user),
    })
