from fastapi import APIRouter, Depends, Query
from typing import Optional, List

from shared.utils import SuccessResponse, PaginatedResponse
from bookstore import order_engine
from bookstore.dependencies import Identity, authenticate, require_admin, get_database
from bookstore.schemas import (
    OrderCreate, OrderFromCart, OrderStatusUpdate, OrderUpdate,
    OrderResponse, OrderStatsResponse
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _address(payload) -> Optional[dict]:
    return payload.shipping_address.dict() if payload.shipping_address else None


@router.get("", response_model=PaginatedResponse[List[OrderResponse]])
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    identity: Identity = Depends(authenticate),
    db=Depends(get_database)
):
    orders, pagination = await order_engine.list_orders(db, identity, user_id, status, page, limit)
    return PaginatedResponse[List[OrderResponse]](data=orders, pagination=pagination)


@router.get("/stats", response_model=SuccessResponse[OrderStatsResponse])
async def get_order_stats(
    user_id: Optional[str] = None,
    identity: Identity = Depends(authenticate),
    db=Depends(get_database)
):
    return SuccessResponse(data=await order_engine.get_order_stats(db, identity, user_id))


@router.get("/user/{user_id}", response_model=PaginatedResponse[List[OrderResponse]])
async def list_user_orders(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: Identity = Depends(require_admin),
    db=Depends(get_database)
):
    orders, pagination = await order_engine.list_orders(db, admin, user_id, None, page, limit)
    return PaginatedResponse[List[OrderResponse]](data=orders, pagination=pagination)


@router.get("/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, identity: Identity = Depends(authenticate), db=Depends(get_database)):
    return SuccessResponse(data=await order_engine.get_order(db, identity, order_id))


@router.post("", response_model=SuccessResponse[OrderResponse], status_code=201)
async def create_order(order: OrderCreate, identity: Identity = Depends(authenticate), db=Depends(get_database)):
    items = [item.dict() for item in order.items] if order.items else None
    created = await order_engine.create_order(
        db, identity, items, _address(order), order.payment_method, order.notes
    )
    return SuccessResponse(data=created, message="Order created successfully")


@router.post("/from-cart", response_model=SuccessResponse[OrderResponse], status_code=201)
async def create_order_from_cart(
    order: OrderFromCart,
    identity: Identity = Depends(authenticate),
    db=Depends(get_database)
):
    created = await order_engine.create_order_from_cart(
        db, identity, _address(order), order.payment_method, order.notes
    )
    return SuccessResponse(data=created, message="Order created successfully")


@router.put("/{order_id}", response_model=SuccessResponse[OrderResponse])
async def update_order(
    order_id: str,
    order_update: OrderUpdate,
    admin: Identity = Depends(require_admin),
    db=Depends(get_database)
):
    updated = await order_engine.update_order(db, admin, order_id, order_update.dict())
    return SuccessResponse(data=updated, message="Order updated successfully")


@router.put("/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    identity: Identity = Depends(authenticate),
    db=Depends(get_database)
):
    updated = await order_engine.update_status(db, identity, order_id, status_update.status, status_update.notes)
    return SuccessResponse(data=updated, message="Order status updated successfully")
