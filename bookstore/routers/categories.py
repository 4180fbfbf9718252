from fastapi import APIRouter, Depends
from datetime import datetime
from typing import Optional, List
import logging
import re

from shared.utils import (
    SuccessResponse, NotFoundException, ConflictException
)
from bookstore.dependencies import (
    Identity, get_database, optional_authenticate, require_admin, str_to_oid
)
from bookstore.models import CategoryDB, to_mongo
from bookstore.schemas import CategoryCreate, CategoryUpdate, CategoryResponse

logger = logging.getLogger("bookstore-service.categories")

router = APIRouter(prefix="/categories", tags=["categories"], dependencies=[Depends(optional_authenticate)])


async def find_by_name(db, name: str, exclude_id=None) -> Optional[dict]:
    """Case-insensitive exact name lookup."""
    query = {"name": {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return await db.categories.find_one(query)


async def count_books(db, category_id: str) -> int:
    return await db.books.count_documents({"category": category_id})


def to_category_response(doc: dict, book_count: Optional[int] = None) -> CategoryResponse:
    doc["id"] = str(doc["_id"])
    if book_count is not None:
        doc["book_count"] = book_count
    return CategoryResponse(**doc)


async def get_category_or_404(db, category_id: str) -> dict:
    category = await db.categories.find_one({"_id": str_to_oid(category_id, "category ID")})
    if not category:
        raise NotFoundException("Category not found")
    return category


@router.get("", response_model=SuccessResponse[List[CategoryResponse]])
async def list_categories(active: Optional[bool] = None, db=Depends(get_database)):
    query = {}
    if active is not None:
        query["is_active"] = active

    categories = []
    async for doc in db.categories.find(query).sort("name", 1):
        categories.append(to_category_response(doc, await count_books(db, str(doc["_id"]))))
    return SuccessResponse(data=categories)


@router.get("/{category_id}", response_model=SuccessResponse[CategoryResponse])
async def get_category(category_id: str, db=Depends(get_database)):
    category = await get_category_or_404(db, category_id)
    return SuccessResponse(data=to_category_response(category, await count_books(db, str(category["_id"]))))


@router.post("", response_model=SuccessResponse[CategoryResponse], status_code=201)
async def create_category(category: CategoryCreate, admin: Identity = Depends(require_admin), db=Depends(get_database)):
    if await find_by_name(db, category.name):
        raise ConflictException("Category with this name already exists")

    cat_db = CategoryDB(**category.dict())
    new_cat = await db.categories.insert_one(to_mongo(cat_db))
    created_cat = await db.categories.find_one({"_id": new_cat.inserted_id})

    logger.info("Category created", extra={"category_id": str(new_cat.inserted_id), "user_id": admin.user_id})
    return SuccessResponse(data=to_category_response(created_cat, 0), message="Category created successfully")


@router.put("/{category_id}", response_model=SuccessResponse[CategoryResponse])
async def update_category(
    category_id: str,
    category_update: CategoryUpdate,
    admin: Identity = Depends(require_admin),
    db=Depends(get_database)
):
    existing = await get_category_or_404(db, category_id)

    update_data = {k: v for k, v in category_update.dict().items() if v is not None}
    if "name" in update_data:
        if await find_by_name(db, update_data["name"], exclude_id=existing["_id"]):
            raise ConflictException("Category with this name already exists")

    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await db.categories.update_one({"_id": existing["_id"]}, {"$set": update_data})

    updated = await db.categories.find_one({"_id": existing["_id"]})
    return SuccessResponse(data=to_category_response(updated), message="Category updated successfully")


@router.put("/{category_id}/toggle", response_model=SuccessResponse[CategoryResponse])
async def toggle_category_status(category_id: str, admin: Identity = Depends(require_admin), db=Depends(get_database)):
    category = await get_category_or_404(db, category_id)

    new_status = not category.get("is_active", True)
    await db.categories.update_one(
        {"_id": category["_id"]},
        {"$set": {"is_active": new_status, "updated_at": datetime.utcnow()}}
    )

    updated = await db.categories.find_one({"_id": category["_id"]})
    message = f"Category {'activated' if new_status else 'deactivated'} successfully"
    return SuccessResponse(data=to_category_response(updated), message=message)


@router.delete("/{category_id}", response_model=SuccessResponse[dict])
async def delete_category(
    category_id: str,
    force: bool = False,
    admin: Identity = Depends(require_admin),
    db=Depends(get_database)
):
    category = await get_category_or_404(db, category_id)

    category_key = str(category["_id"])
    book_count = await count_books(db, category_key)
    if book_count > 0 and not force:
        raise ConflictException(
            f"Cannot delete category with {book_count} books. Use force=true to delete anyway.",
            details={"book_count": book_count}
        )

    await db.categories.delete_one({"_id": category["_id"]})

    # Forced: dependent books are detached, not deleted
    detached = 0
    if book_count > 0:
        result = await db.books.update_many({"category": category_key}, {"$unset": {"category": ""}})
        detached = result.modified_count

    logger.info("Category deleted", extra={"category_id": category_id, "user_id": admin.user_id})
    return SuccessResponse(
        data={"id": category_key, "detached_books": detached},
        message="Category deleted successfully"
    )
