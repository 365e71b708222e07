# crm/routers/auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import get_current_user
from crm.models import User
from crm.schemas import LoginIn, RegisterIn, TokenOut, UserOut
from crm.security import create_access_token, hash_password, verify_password

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


def _token_for(user: User) -> TokenOut:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return TokenOut(access_token=token, user=UserOut.model_validate(user, from_attributes=True))


@router.post("/register", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, session: Session = Depends(get_session)):
    username = payload.username.strip()
    existing = session.exec(select(User).where(User.username == username)).first()
    if existing:
        raise HTTPException(status_code=409, detail="Username already exists")

    user = User(
        username=username,
        password_hash=hash_password(payload.password),
        name=payload.name.strip(),
        email=payload.email.lower().strip(),
        role=payload.role,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    log.info("Registered user %s (%s)", user.username, user.role)
    return _token_for(user)


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, session: Session = Depends(get_session)):
    user = session.exec(select(User).where(User.username == payload.username.strip())).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return _token_for(user)


@router.get("/user", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return UserOut.model_validate(user, from_attributes=True)
