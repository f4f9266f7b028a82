import os
import uuid
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from passlib.context import CryptContext
from pydantic import BaseModel, Field as PydanticField
from sqlmodel import Field, Session, SQLModel, create_engine, select

from finance_common.log import configure_logging
from finance_common.security import create_token

configure_logging("auth-service")
logger = structlog.get_logger(__name__)

AUTH_DATABASE_URL = os.getenv("AUTH_DATABASE_URL", "sqlite:///./users.db")

app = FastAPI(title="auth-service")

pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")
connect_args = {"check_same_thread": False} if AUTH_DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(AUTH_DATABASE_URL, echo=False, connect_args=connect_args)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str


def get_session():
    with Session(engine) as s:
        yield s


class RegisterIn(BaseModel):
    username: str = PydanticField(min_length=3, max_length=64)
    password: str = PydanticField(min_length=8, max_length=72)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: Optional[str] = None


@app.on_event("startup")
def on_start():
    SQLModel.metadata.create_all(engine, tables=[User.__table__])


@app.post("/auth/register", response_model=TokenOut)
def register(body: RegisterIn, session: Session = Depends(get_session)):
    username = body.username.strip().lower()
    if session.exec(select(User).where(User.username == username)).first():
        raise HTTPException(409, "User exists")
    user = User(username=username, password_hash=pwd.hash(body.password))
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("user_registered", user_id=user.id)
    return TokenOut(access_token=create_token(user.id), user_id=user.id)


@app.post("/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends(), session: Session = Depends(get_session)):
    user = session.exec(select(User).where(User.username == form.username.strip().lower())).first()
    if not user or not pwd.verify(form.password, user.password_hash):
        logger.info("login_failed", username=form.username)
        raise HTTPException(401, "Invalid credentials")
    return TokenOut(access_token=create_token(user.id), user_id=user.id)
