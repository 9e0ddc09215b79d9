# auth.py

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional
from databases import Database
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from slot_swap.config import SECRET_KEY, ALGORITHM
from slot_swap.data_models import UserSummary, utcnow
from slot_swap.database import is_unique_violation
from slot_swap.errors import ErrorKind, SwapError
from slot_swap.models import users

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# Pydantic Models
class User(BaseModel):
    id: str
    name: str
    email: str

class UserInDB(User):
    hashed_password: str

class Token(BaseModel):
    access_token: str
    token_type: str
    user: User

# User creation model
class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)


def _user_in_db(row) -> UserInDB:
    return UserInDB(id=row["id"], name=row["name"], email=row["email"], hashed_password=row["hashed_password"])

async def get_user(database: Database, user_id: str) -> Optional[UserInDB]:
    row = await database.fetch_one(users.select().where(users.c.id == user_id))
    return _user_in_db(row) if row is not None else None

async def get_user_by_email(database: Database, email: str) -> Optional[UserInDB]:
    row = await database.fetch_one(users.select().where(users.c.email == email.lower()))
    return _user_in_db(row) if row is not None else None

async def fetch_user_summaries(database: Database, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
    """Looks up the public name/email of each user id in one query."""
    user_ids = set(user_ids)
    if not user_ids:
        return {}
    query = users.select().where(users.c.id.in_(user_ids))
    rows = await database.fetch_all(query)
    return {row["id"]: UserSummary(id=row["id"], name=row["name"], email=row["email"]) for row in rows}

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

# Function to create a user in the database
async def create_user(database: Database, user: UserCreate) -> User:
    values = {
        "id": str(uuid.uuid4()),
        "name": user.name.strip(),
        "email": user.email.lower(),
        "hashed_password": pwd_context.hash(user.password),
        "created_at": utcnow(),
    }
    try:
        await database.execute(users.insert().values(**values))
    except Exception as exc:
        # A concurrent signup can claim the email between lookup and insert
        if not is_unique_violation(exc):
            raise
        raise SwapError(ErrorKind.VALIDATION, "Email already registered.") from exc
    return User(id=values["id"], name=values["name"], email=values["email"])

async def authenticate_user(database: Database, email: str, password: str) -> Optional[UserInDB]:
    user = await get_user_by_email(database, email)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_current_user(token: str = Depends(oauth2_scheme), database: Database = Depends(get_database)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = await get_user(database, user_id)
    if user is None:
        raise credentials_exception

    return User(id=user.id, name=user.name, email=user.email)
