"""
Shopping cart embedded on the user document.

Cart lines are keyed by title, not by book id: two different books that
share a title end up on the same line.

Every change is a single update using MongoDB's array operators, so two
requests editing the same cart never overwrite each other's lines.
"""
from datetime import datetime
from typing import List

from shared.utils import NotFoundException, InvalidArgumentException
from bookstore.dependencies import str_to_oid
from bookstore.models import CartItemDB, to_mongo


async def load_user(db, user_id: str) -> dict:
    user = await db.users.find_one({"_id": str_to_oid(user_id, "user ID")})
    if not user:
        raise NotFoundException("User not found")
    return user


async def get_cart(db, user_id: str) -> List[dict]:
    user = await load_user(db, user_id)
    return user.get("cart") or []


async def add_item(db, user_id: str, item: dict) -> List[dict]:
    """Add one copy of ``item``; an existing line with the same title gains one."""
    user_oid = str_to_oid(user_id, "user ID")
    title = item["title"]
    line = to_mongo(CartItemDB(
        title=title,
        author=item["author"],
        price=item["price"],
        description=item.get("description") or "",
        book_id=item.get("book_id"),
        quantity=1
    ))

    # A second pass covers a line pushed by another request in between
    for _ in range(2):
        now = datetime.utcnow()
        # Price snapshot is kept from the first add
        bumped = await db.users.update_one(
            {"_id": user_oid, "cart.title": title},
            {"$inc": {"cart.$.quantity": 1}, "$set": {"updated_at": now}}
        )
        if bumped.matched_count:
            break
        pushed = await db.users.update_one(
            {"_id": user_oid, "cart.title": {"$ne": title}},
            {"$push": {"cart": line}, "$set": {"updated_at": now}}
        )
        if pushed.matched_count:
            break
    else:
        raise NotFoundException("User not found")

    return await get_cart(db, user_id)


async def update_item(db, user_id: str, title: str, quantity: int) -> List[dict]:
    if quantity < 0:
        raise InvalidArgumentException("Valid title and quantity are required")
    user_oid = str_to_oid(user_id, "user ID")
    now = datetime.utcnow()

    if quantity == 0:
        update = {"$pull": {"cart": {"title": title}}, "$set": {"updated_at": now}}
    else:
        update = {"$set": {"cart.$.quantity": quantity, "updated_at": now}}

    result = await db.users.update_one({"_id": user_oid, "cart.title": title}, update)
    if result.matched_count == 0:
        await load_user(db, user_id)
        raise NotFoundException("Item not found in cart")

    return await get_cart(db, user_id)


async def remove_item(db, user_id: str, title: str) -> List[dict]:
    result = await db.users.update_one(
        {"_id": str_to_oid(user_id, "user ID")},
        {"$pull": {"cart": {"title": title}}, "$set": {"updated_at": datetime.utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFoundException("User not found")
    return await get_cart(db, user_id)


async def clear(db, user_id: str) -> List[dict]:
    result = await db.users.update_one(
        {"_id": str_to_oid(user_id, "user ID")},
        {"$set": {"cart": [], "updated_at": datetime.utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFoundException("User not found")
    return []
