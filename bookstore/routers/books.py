from fastapi import APIRouter, Depends, Query, Request
from datetime import datetime
from typing import Optional, List
import logging
import re

from shared.utils import (
    SuccessResponse, PaginatedResponse, Pagination,
    NotFoundException, InvalidArgumentException, settings
)
from shared.security_config import limiter, sanitize_input
from bookstore.dependencies import (
    Identity, get_database, optional_authenticate, require_admin, str_to_oid
)
from bookstore.models import BookDB, to_mongo
from bookstore.schemas import BookCreate, BookUpdate, BookResponse

logger = logging.getLogger("bookstore-service.books")

# Public reads still attribute the caller in request logs when a token is sent
router = APIRouter(prefix="/books", tags=["books"], dependencies=[Depends(optional_authenticate)])

SORT_OPTIONS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "title_asc": [("title", 1)],
    "title_desc": [("title", -1)],
}
DEFAULT_SORT = [("created_at", -1), ("_id", -1)]


def search_filter(term: str) -> dict:
    pattern = re.escape(sanitize_input(term))
    return {"$or": [
        {"title": {"$regex": pattern, "$options": "i"}},
        {"author": {"$regex": pattern, "$options": "i"}},
        {"description": {"$regex": pattern, "$options": "i"}},
    ]}


def to_book_response(doc: dict) -> BookResponse:
    doc["id"] = str(doc["_id"])
    return BookResponse(**doc)


async def paginate_books(db, query: dict, page: int, limit: int, sort=DEFAULT_SORT):
    skip = (page - 1) * limit
    total = await db.books.count_documents(query)
    cursor = db.books.find(query).sort(sort).skip(skip).limit(limit)
    books = [to_book_response(doc) for doc in await cursor.to_list(length=limit)]
    return PaginatedResponse[List[BookResponse]](
        data=books,
        pagination=Pagination.build(page, limit, total)
    )


def category_key(category_id: str) -> str:
    """Canonical form of a category id as stored on books."""
    try:
        return str(str_to_oid(category_id, "category ID"))
    except InvalidArgumentException:
        return category_id


async def ensure_category_exists(db, category_id: str) -> str:
    """Return the stored id of an existing category."""
    cat = None
    try:
        cat = await db.categories.find_one({"_id": str_to_oid(category_id, "category ID")})
    except InvalidArgumentException:
        pass
    if not cat:
        raise InvalidArgumentException(f"Invalid category: '{category_id}' not found")
    return str(cat["_id"])


@router.get("", response_model=PaginatedResponse[List[BookResponse]])
@limiter.limit(settings.CATALOG_RATE_LIMIT)
async def list_books(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    db=Depends(get_database)
):
    query = {}
    if category:
        query["category"] = category_key(category)
    if search:
        query.update(search_filter(search))

    return await paginate_books(db, query, page, limit, SORT_OPTIONS.get(sort, DEFAULT_SORT))


@router.get("/search", response_model=PaginatedResponse[List[BookResponse]])
@limiter.limit(settings.CATALOG_RATE_LIMIT)
async def search_books(
    request: Request,
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_database)
):
    if not q or not q.strip():
        raise InvalidArgumentException("Search term is required")
    return await paginate_books(db, search_filter(q), page, limit)


@router.get("/category/{category_id}", response_model=PaginatedResponse[List[BookResponse]])
async def list_books_by_category(
    category_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_database)
):
    return await paginate_books(db, {"category": category_key(category_id)}, page, limit)


@router.get("/{book_id}", response_model=SuccessResponse[BookResponse])
async def get_book(
    book_id: str,
    db=Depends(get_database)
):
    book = await db.books.find_one({"_id": str_to_oid(book_id, "book ID")})
    if not book:
        raise NotFoundException("Book not found")
    return SuccessResponse(data=to_book_response(book))


@router.post("", response_model=SuccessResponse[BookResponse], status_code=201)
async def create_book(book: BookCreate, admin: Identity = Depends(require_admin), db=Depends(get_database)):
    book_data = book.dict()
    # An empty category means none
    book_data["category"] = await ensure_category_exists(db, book.category) if book.category else None

    book_db = BookDB(**book_data)
    new_book = await db.books.insert_one(to_mongo(book_db))
    created_book = await db.books.find_one({"_id": new_book.inserted_id})

    logger.info("Book created", extra={"book_id": str(new_book.inserted_id), "user_id": admin.user_id})
    return SuccessResponse(data=to_book_response(created_book), message="Book created successfully")


@router.put("/{book_id}", response_model=SuccessResponse[BookResponse])
async def update_book(
    book_id: str,
    book_update: BookUpdate,
    admin: Identity = Depends(require_admin),
    db=Depends(get_database)
):
    book_oid = str_to_oid(book_id, "book ID")
    book = await db.books.find_one({"_id": book_oid})
    if not book:
        raise NotFoundException("Book not found")

    update_data = {k: v for k, v in book_update.dict().items() if v is not None}
    update = {}
    if "category" in update_data:
        if update_data["category"]:
            update_data["category"] = await ensure_category_exists(db, update_data["category"])
        else:
            # "" detaches the book from its category
            del update_data["category"]
            update["$unset"] = {"category": ""}
    if "price" in update_data:
        update_data["price"] = float(update_data["price"])

    if update_data or update:
        update_data["updated_at"] = datetime.utcnow()
        update["$set"] = update_data
        await db.books.update_one({"_id": book_oid}, update)

    updated_book = await db.books.find_one({"_id": book_oid})
    return SuccessResponse(data=to_book_response(updated_book), message="Book updated successfully")


@router.delete("/{book_id}", response_model=SuccessResponse[dict])
async def delete_book(book_id: str, admin: Identity = Depends(require_admin), db=Depends(get_database)):
    result = await db.books.delete_one({"_id": str_to_oid(book_id, "book ID")})
    if result.deleted_count == 0:
        raise NotFoundException("Book not found")

    logger.info("Book deleted", extra={"book_id": book_id, "user_id": admin.user_id})
    return SuccessResponse(data={"id": book_id}, message="Book deleted successfully")
