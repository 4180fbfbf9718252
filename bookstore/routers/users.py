from fastapi import APIRouter, Depends, Request
from datetime import datetime
from typing import List
import logging

from shared.utils import (
    SuccessResponse, ConflictException, UnauthorizedException,
    NotFoundException, get_password_hash, verify_password,
    create_access_token, settings
)
from shared.security_config import limiter
from bookstore import cart as cart_store
from bookstore.dependencies import Identity, authenticate, get_database, str_to_oid
from bookstore.models import UserDB, to_mongo
from bookstore.schemas import (
    UserRegister, UserLogin, ProfileUpdate, UserResponse, AuthResponse,
    CartItemAdd, CartItemUpdate, CartItemRemove, CartItemResponse
)

logger = logging.getLogger("bookstore-service.users")

router = APIRouter(prefix="/users", tags=["users"])


def to_user_response(doc: dict) -> UserResponse:
    doc["id"] = str(doc["_id"])
    doc.setdefault("role", "user")
    return UserResponse(**doc)


def issue_token(user: dict) -> str:
    return create_access_token(data={"user_id": str(user["_id"]), "email": user["email"]})


@router.post("/register", response_model=SuccessResponse[AuthResponse], status_code=201)
async def register(user: UserRegister, db=Depends(get_database)):
    existing_user = await db.users.find_one({"email": user.email})
    if existing_user:
        raise ConflictException("User with this email already exists")

    # Role is always "user" at registration; admins are promoted out of band
    user_db = UserDB(
        name=user.name,
        email=user.email,
        password_hash=get_password_hash(user.password),
        role="user",
        cart=[]
    )
    new_user = await db.users.insert_one(to_mongo(user_db))
    created_user = await db.users.find_one({"_id": new_user.inserted_id})

    logger.info("User registered", extra={"user_id": str(new_user.inserted_id)})
    return SuccessResponse(
        data=AuthResponse(access_token=issue_token(created_user), user=to_user_response(created_user)),
        message="User registered successfully"
    )


@router.post("/login", response_model=SuccessResponse[AuthResponse])
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(user_credentials: UserLogin, request: Request, db=Depends(get_database)):
    user = await db.users.find_one({"email": user_credentials.email})
    if not user or not verify_password(user_credentials.password, user["password_hash"]):
        raise UnauthorizedException("Invalid email or password")

    return SuccessResponse(
        data=AuthResponse(access_token=issue_token(user), user=to_user_response(user)),
        message="Login successful"
    )


@router.get("/profile", response_model=SuccessResponse[UserResponse])
async def get_profile(identity: Identity = Depends(authenticate), db=Depends(get_database)):
    user = await cart_store.load_user(db, identity.user_id)
    return SuccessResponse(data=to_user_response(user))


@router.put("/profile", response_model=SuccessResponse[UserResponse])
async def update_profile(
    profile_update: ProfileUpdate,
    identity: Identity = Depends(authenticate),
    db=Depends(get_database)
):
    user_oid = str_to_oid(identity.user_id, "user ID")
    result = await db.users.update_one(
        {"_id": user_oid},
        {"$set": {"name": profile_update.name, "updated_at": datetime.utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFoundException("User not found")

    updated_user = await db.users.find_one({"_id": user_oid})
    return SuccessResponse(data=to_user_response(updated_user), message="Profile updated successfully")


# --- Cart ---

@router.get("/cart", response_model=SuccessResponse[List[CartItemResponse]])
async def get_cart(identity: Identity = Depends(authenticate), db=Depends(get_database)):
    return SuccessResponse(data=await cart_store.get_cart(db, identity.user_id))


@router.post("/cart/add", response_model=SuccessResponse[List[CartItemResponse]])
async def add_to_cart(item: CartItemAdd, identity: Identity = Depends(authenticate), db=Depends(get_database)):
    items = await cart_store.add_item(db, identity.user_id, item.dict())
    return SuccessResponse(data=items, message="Item added to cart")


@router.put("/cart/update", response_model=SuccessResponse[List[CartItemResponse]])
async def update_cart_item(update: CartItemUpdate, identity: Identity = Depends(authenticate), db=Depends(get_database)):
    items = await cart_store.update_item(db, identity.user_id, update.title, update.quantity)
    return SuccessResponse(data=items, message="Cart updated successfully")


@router.delete("/cart/remove", response_model=SuccessResponse[List[CartItemResponse]])
async def remove_cart_item(item: CartItemRemove, identity: Identity = Depends(authenticate), db=Depends(get_database)):
    items = await cart_store.remove_item(db, identity.user_id, item.title)
    return SuccessResponse(data=items, message="Item removed from cart")


@router.post("/cart/clear", response_model=SuccessResponse[List[CartItemResponse]])
async def clear_cart(identity: Identity = Depends(authenticate), db=Depends(get_database)):
    items = await cart_store.clear(db, identity.user_id)
    return SuccessResponse(data=items, message="Cart cleared successfully")
