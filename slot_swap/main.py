# main.py
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

import fastapi
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from slot_swap.auth import (
    User,
    Token,
    UserCreate,
    authenticate_user,
    create_access_token,
    create_user,
    get_current_user,
    get_database,
    get_user_by_email,
)
from slot_swap.config import ACCESS_TOKEN_EXPIRE_MINUTES, DATABASE_URL, LOG_LEVEL
from slot_swap.data_models import Slot, SlotStatus, SwapRequest, SwapRequestListing
from slot_swap.database import create_database, create_tables
from slot_swap.errors import ErrorKind, SwapError
from slot_swap.negotiator import SwapNegotiator
from slot_swap.slot_store import SlotStore

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# Request bodies
class EventCreate(BaseModel):
    title: str
    start_time: datetime
    end_time: datetime
    status: Optional[SlotStatus] = None

class EventUpdate(BaseModel):
    title: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[SlotStatus] = None

class SwapRequestCreate(BaseModel):
    my_slot_id: UUID
    their_slot_id: UUID

class SwapResponseCreate(BaseModel):
    accept: bool


def get_slot_store(request: Request) -> SlotStore:
    return request.app.state.slot_store

def get_negotiator(request: Request) -> SwapNegotiator:
    return request.app.state.negotiator


auth_router = APIRouter(prefix="/api/auth")
events_router = APIRouter(prefix="/api/events")
swaps_router = APIRouter(prefix="/api")


def _token_for(user: User) -> Token:
    access_token = create_access_token(
        data={"sub": user.id}, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return Token(access_token=access_token, token_type="bearer", user=user)


@auth_router.post("/signup", response_model=Token, status_code=status.HTTP_201_CREATED)
async def signup(user: UserCreate, database=Depends(get_database)):
    if await get_user_by_email(database, user.email):
        raise SwapError(ErrorKind.VALIDATION, "Email already registered.")
    created = await create_user(database, user)
    logger.info(f"Registered user {created.id}")
    return _token_for(created)

@auth_router.post("/login", response_model=Token)
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), database=Depends(get_database)):
    user = await authenticate_user(database, form_data.username, form_data.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _token_for(User(id=user.id, name=user.name, email=user.email))

@auth_router.get("/me", response_model=User)
async def read_users_me(current_user: User = Depends(get_current_user)):
    """
    Get the current authenticated user's profile data.
    """
    return current_user


@events_router.get("", response_model=List[Slot])
async def list_my_events(current_user: User = Depends(get_current_user), store: SlotStore = Depends(get_slot_store)):
    return await store.list_by_owner(current_user.id)

@events_router.post("", response_model=Slot, status_code=status.HTTP_201_CREATED)
async def create_event(event: EventCreate, current_user: User = Depends(get_current_user), store: SlotStore = Depends(get_slot_store)):
    return await store.create(current_user.id, event.title, event.start_time, event.end_time, event.status)

@events_router.put("/{event_id}", response_model=Slot)
async def update_event(event_id: str, event: EventUpdate, current_user: User = Depends(get_current_user), store: SlotStore = Depends(get_slot_store)):
    return await store.update(event_id, current_user.id, event.model_dump(exclude_unset=True))

@events_router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(event_id: str, current_user: User = Depends(get_current_user), store: SlotStore = Depends(get_slot_store)):
    await store.delete(event_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@swaps_router.get("/swappable-slots", response_model=List[Slot])
async def list_swappable_slots(current_user: User = Depends(get_current_user), store: SlotStore = Depends(get_slot_store)):
    return await store.list_swappable_excluding(current_user.id)

@swaps_router.post("/swap-request", response_model=SwapRequest, status_code=status.HTTP_201_CREATED)
async def create_swap_request(body: SwapRequestCreate, current_user: User = Depends(get_current_user), negotiator: SwapNegotiator = Depends(get_negotiator)):
    return await negotiator.create_request(current_user.id, str(body.my_slot_id), str(body.their_slot_id))

@swaps_router.post("/swap-response/{request_id}", response_model=SwapRequest)
async def respond_to_swap_request(request_id: str, body: SwapResponseCreate, current_user: User = Depends(get_current_user), negotiator: SwapNegotiator = Depends(get_negotiator)):
    return await negotiator.respond(current_user.id, request_id, body.accept)

@swaps_router.get("/requests", response_model=SwapRequestListing)
async def list_swap_requests(current_user: User = Depends(get_current_user), negotiator: SwapNegotiator = Depends(get_negotiator)):
    return await negotiator.list_requests(current_user.id)


async def swap_error_handler(request: Request, exc: SwapError):
    if exc.kind == ErrorKind.INTERNAL:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} failed")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(database_url: Optional[str] = None) -> fastapi.FastAPI:
    """Builds the API around one storage handle shared by the slot store and the negotiator."""
    database_url = database_url or DATABASE_URL
    app = fastapi.FastAPI(title="Slot Swap")

    database = create_database(database_url)
    slot_store = SlotStore(database)
    app.state.database = database
    app.state.slot_store = slot_store
    app.state.negotiator = SwapNegotiator(database, slot_store)

    app.include_router(auth_router)
    app.include_router(events_router)
    app.include_router(swaps_router)
    app.add_exception_handler(SwapError, swap_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup():
        # Create tables if they don't exist
        create_tables(database_url)
        await database.connect()
        logger.info("Database connected")

    @app.on_event("shutdown")
    async def shutdown():
        await database.disconnect()

    return app


app = create_app()
