"""
Order engine.

Creating an order spans three collections: books (stock), orders and users
(cart). There is no multi-document transaction; instead stock is reserved
line by line with a conditional ``$inc`` that only matches while enough
stock is left, and every reservation already applied is handed back when a
later step fails.

Known gaps:
- an order number consumed by a failed insert is never reused, so the
  sequence can have holes;
- between a reservation and its compensation another request can observe
  the lowered stock.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from shared.utils import (
    Pagination, InvalidArgumentException, NotFoundException,
    ForbiddenException, InternalException
)
from bookstore.dependencies import Identity, authorize, str_to_oid
from bookstore.models import (
    ORDER_STATUSES, OrderDB, OrderItemDB, StatusHistoryDB,
    ShippingAddressDB, to_mongo
)

logger = logging.getLogger("bookstore-service.orders")

ORDER_NUMBER_COUNTER = "order_number"


def format_order(doc: dict) -> dict:
    doc["id"] = str(doc.pop("_id"))
    return doc


async def generate_order_number(db, now: Optional[datetime] = None) -> str:
    """
    Return the next ``ORD-YYYYMMDD-NNNN`` number.

    NNNN comes from a counter document bumped with a single atomic
    ``$inc``, so concurrent orders never share a number.
    """
    now = now or datetime.utcnow()
    counter = await db.counters.find_one_and_update(
        {"_id": ORDER_NUMBER_COUNTER},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return f"ORD-{now:%Y%m%d}-{counter['seq']:04d}"


def _validate_order_request(items, shipping_address, payment_method):
    if not items:
        raise InvalidArgumentException("Order items are required")

    if not shipping_address or not shipping_address.get("address") or not shipping_address.get("city"):
        raise InvalidArgumentException("Shipping address with address and city is required")

    if not payment_method:
        raise InvalidArgumentException("Payment method is required")

    for item in items:
        quantity = item.get("quantity")
        valid_quantity = isinstance(quantity, int) and not isinstance(quantity, bool) and quantity > 0
        if not item.get("book_id") or not valid_quantity:
            raise InvalidArgumentException("Each item must have a valid book_id and quantity")


def _insufficient_stock(title: str, available: int, requested: int) -> InvalidArgumentException:
    return InvalidArgumentException(
        f'Insufficient stock for "{title}". Available: {available}, Requested: {requested}'
    )


async def _price_items(db, items: List[dict]) -> Tuple[List[OrderItemDB], Decimal]:
    lines = []
    total_amount = Decimal(0)

    for item in items:
        book_oid = str_to_oid(item["book_id"], "book ID")
        book = await db.books.find_one({"_id": book_oid})
        if not book:
            raise NotFoundException(f"Book with ID {item['book_id']} not found")

        if book.get("stock", 0) < item["quantity"]:
            raise _insufficient_stock(book["title"], book.get("stock", 0), item["quantity"])

        price = Decimal(str(book["price"]))
        subtotal = price * item["quantity"]
        total_amount += subtotal
        lines.append(OrderItemDB(
            book_id=str(book["_id"]),
            title=book["title"],
            author=book["author"],
            price=price,
            quantity=item["quantity"],
            subtotal=subtotal
        ))

    return lines, total_amount


async def _release_stock(db, lines: List[OrderItemDB]):
    for line in lines:
        await db.books.update_one(
            {"_id": ObjectId(line.book_id)},
            {"$inc": {"stock": line.quantity}}
        )
    if lines:
        logger.warning("Released reserved stock", extra={"book_id": [line.book_id for line in lines]})


async def _reserve_stock(db, lines: List[OrderItemDB]):
    reserved = []
    for line in lines:
        book_oid = ObjectId(line.book_id)
        result = await db.books.update_one(
            {"_id": book_oid, "stock": {"$gte": line.quantity}},
            {"$inc": {"stock": -line.quantity}, "$set": {"updated_at": datetime.utcnow()}}
        )
        if result.matched_count == 0:
            book = await db.books.find_one({"_id": book_oid})
            await _release_stock(db, reserved)
            if not book:
                raise NotFoundException(f"Book with ID {line.book_id} not found")
            raise _insufficient_stock(line.title, book.get("stock", 0), line.quantity)
        reserved.append(line)


async def create_order(
    db,
    identity: Identity,
    items: Optional[List[dict]],
    shipping_address: Optional[dict],
    payment_method: Optional[str],
    notes: Optional[str] = None
) -> dict:
    _validate_order_request(items, shipping_address, payment_method)
    user_oid = str_to_oid(identity.user_id, "user ID")

    lines, total_amount = await _price_items(db, items)
    await _reserve_stock(db, lines)

    now = datetime.utcnow()
    try:
        order_db = OrderDB(
            order_number=await generate_order_number(db, now),
            user_id=identity.user_id,
            items=lines,
            total_amount=total_amount,
            status="pending",
            status_history=[StatusHistoryDB(status="pending", notes="Order created", timestamp=now)],
            shipping_address=ShippingAddressDB(**shipping_address),
            payment_method=payment_method,
            notes=notes or "",
            created_at=now,
            updated_at=now
        )
        new_order = await db.orders.insert_one(to_mongo(order_db))
    except PyMongoError:
        logger.exception("Order insert failed", extra={"user_id": identity.user_id})
        await _release_stock(db, lines)
        raise InternalException("Failed to create order")

    await db.users.update_one({"_id": user_oid}, {"$set": {"cart": [], "updated_at": now}})

    logger.info("Order created", extra={
        "order_id": str(new_order.inserted_id),
        "order_number": order_db.order_number,
        "user_id": identity.user_id
    })
    created_order = await db.orders.find_one({"_id": new_order.inserted_id})
    return format_order(created_order)


async def create_order_from_cart(
    db,
    identity: Identity,
    shipping_address: Optional[dict],
    payment_method: Optional[str],
    notes: Optional[str] = None
) -> dict:
    """
    Order everything in the caller's cart.

    A line without ``book_id`` falls back to the line's own ``_id``, which
    is not a book id; such lines usually fail validation or lookup.
    """
    user = await db.users.find_one({"_id": str_to_oid(identity.user_id, "user ID")})
    if not user or not user.get("cart"):
        raise InvalidArgumentException("Cart is empty")

    items = []
    for cart_item in user["cart"]:
        book_id = cart_item.get("book_id") or cart_item.get("_id")
        items.append({
            "book_id": str(book_id) if book_id else None,
            "quantity": cart_item.get("quantity")
        })

    return await create_order(db, identity, items, shipping_address, payment_method, notes)


async def get_order(db, identity: Identity, order_id: str) -> dict:
    order = await db.orders.find_one({"_id": str_to_oid(order_id, "order ID")})
    if not order:
        raise NotFoundException("Order not found")

    role = await authorize(db, identity)
    if role != "admin" and order["user_id"] != identity.user_id:
        raise ForbiddenException("Access denied")

    return format_order(order)


async def update_status(db, identity: Identity, order_id: str, status: str, notes: Optional[str] = "") -> dict:
    if status not in ORDER_STATUSES:
        raise InvalidArgumentException("Invalid status. Valid statuses: " + ", ".join(ORDER_STATUSES))

    order_oid = str_to_oid(order_id, "order ID")
    order = await db.orders.find_one({"_id": order_oid})
    if not order:
        raise NotFoundException("Order not found")

    query = {"_id": order_oid}
    role = await authorize(db, identity)
    if role != "admin":
        if order["user_id"] != identity.user_id:
            raise ForbiddenException("Access denied")
        if status != "cancelled" or order["status"] != "pending":
            raise ForbiddenException("You can only cancel pending orders")
        # Guards against a concurrent transition out of pending
        query["status"] = "pending"

    now = datetime.utcnow()
    entry = StatusHistoryDB(status=status, notes=notes or "", timestamp=now)
    result = await db.orders.update_one(
        query,
        {
            "$set": {"status": status, "updated_at": now},
            "$push": {"status_history": to_mongo(entry)}
        }
    )
    if result.matched_count == 0:
        raise ForbiddenException("You can only cancel pending orders")

    logger.info("Order status updated", extra={
        "order_id": order_id,
        "order_number": order["order_number"],
        "user_id": identity.user_id
    })
    updated_order = await db.orders.find_one({"_id": order_oid})
    return format_order(updated_order)


async def update_order(db, identity: Identity, order_id: str, changes: dict) -> dict:
    """Admin edit of shipping address, payment method and notes."""
    await authorize(db, identity, "admin")

    order_oid = str_to_oid(order_id, "order ID")
    order = await db.orders.find_one({"_id": order_oid})
    if not order:
        raise NotFoundException("Order not found")

    update_data = {k: v for k, v in changes.items() if k in ("shipping_address", "payment_method", "notes") and v is not None}

    if "shipping_address" in update_data:
        address = update_data["shipping_address"]
        if not address.get("address") or not address.get("city"):
            raise InvalidArgumentException("Shipping address with address and city is required")
        update_data["shipping_address"] = to_mongo(ShippingAddressDB(**address))

    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await db.orders.update_one({"_id": order_oid}, {"$set": update_data})

    updated_order = await db.orders.find_one({"_id": order_oid})
    return format_order(updated_order)


async def list_orders(
    db,
    identity: Identity,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10
) -> Tuple[List[dict], Pagination]:
    role = await authorize(db, identity)

    query = {}
    if role != "admin":
        # Non-admins only ever see their own orders
        query["user_id"] = identity.user_id
    elif user_id:
        query["user_id"] = user_id
    if status:
        query["status"] = status

    skip = (page - 1) * limit
    total = await db.orders.count_documents(query)
    cursor = db.orders.find(query).sort([("created_at", -1), ("_id", -1)]).skip(skip).limit(limit)
    orders = [format_order(doc) for doc in await cursor.to_list(length=limit)]

    return orders, Pagination.build(page, limit, total)


async def get_order_stats(db, identity: Identity, target_user_id: Optional[str] = None) -> dict:
    """
    Order counts and revenue. Non-admins always get their own figures;
    admins get ``target_user_id``'s or, without one, the whole store's.
    ``completed_orders`` counts delivered orders.
    """
    role = await authorize(db, identity)
    scope = identity.user_id if role != "admin" else target_user_id
    match = {"user_id": scope} if scope else {}

    pipeline = [
        {"$match": match},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$total_amount"}}}
    ]
    stats = {
        "total_orders": 0,
        "total_revenue": 0.0,
        "pending_orders": 0,
        "completed_orders": 0,
        "cancelled_orders": 0
    }
    async for group in db.orders.aggregate(pipeline):
        stats["total_orders"] += group["count"]
        stats["total_revenue"] += group["revenue"] or 0
        if group["_id"] == "pending":
            stats["pending_orders"] = group["count"]
        elif group["_id"] == "delivered":
            stats["completed_orders"] = group["count"]
        elif group["_id"] == "cancelled":
            stats["cancelled_orders"] = group["count"]

    stats["total_revenue"] = Decimal(str(round(stats["total_revenue"], 2)))
    return stats
