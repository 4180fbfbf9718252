#!/usr/bin/env python3
"""
Reset the bookstore database and load sample data.

Usage:
    python seed_bookstore.py [--mongo-url URL] [--db-name NAME] [--admin-password PASSWORD]

Drops every document in users, categories, books, orders and counters, then
creates an admin account, a handful of categories and books.
"""
import argparse
import asyncio
import os
import platform

from shared.utils import get_db_client, get_password_hash, settings
from bookstore.models import UserDB, CategoryDB, BookDB, to_mongo

# --- Colors ---
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

if platform.system() == "Windows":
    os.system('color')

def log(msg, color=Colors.ENDC):
    print(f"{color}{msg}{Colors.ENDC}")

ADMIN_EMAIL = "admin@bookstore.com"

CATEGORIES = [
    ("Science Fiction", "Futuristic and speculative fiction exploring advanced science and technology"),
    ("Fantasy", "Magical worlds and mythical creatures"),
    ("Non-Fiction", "Real-world topics and educational content"),
    ("Mystery", "Detectives, crimes and puzzles to solve"),
]

# title, author, description, price, category name, stock
BOOKS = [
    ("Dune", "Frank Herbert", "A desert planet, a precious spice and a young heir.", 450, "Science Fiction", 15),
    ("Foundation", "Isaac Asimov", "The fall of a galactic empire and a plan to shorten the dark age.", 380, "Science Fiction", 10),
    ("The Hobbit", "J.R.R. Tolkien", "A reluctant hobbit joins a quest for a dragon's treasure.", 350, "Fantasy", 20),
    ("A Wizard of Earthsea", "Ursula K. Le Guin", "A young mage confronts the shadow he unleashed.", 320, "Fantasy", 8),
    ("Sapiens", "Yuval Noah Harari", "A brief history of humankind.", 520, "Non-Fiction", 12),
    ("The Hound of the Baskervilles", "Arthur Conan Doyle", "Sherlock Holmes and a legendary hound.", 250, "Mystery", 5),
]

async def seed(mongo_url: str, db_name: str, admin_password: str):
    client = get_db_client(mongo_url)
    try:
        db = client[db_name]

        for collection in ("users", "categories", "books", "orders", "counters"):
            await db[collection].delete_many({})
        log("✓ Cleared existing data", Colors.BLUE)

        admin = UserDB(
            name="Admin User",
            email=ADMIN_EMAIL,
            password_hash=get_password_hash(admin_password),
            role="admin",
            cart=[]
        )
        await db.users.insert_one(to_mongo(admin))
        log(f"✓ Created admin user {ADMIN_EMAIL}", Colors.GREEN)

        category_ids = {}
        for name, description in CATEGORIES:
            result = await db.categories.insert_one(to_mongo(CategoryDB(name=name, description=description)))
            category_ids[name] = str(result.inserted_id)
        log(f"✓ Created {len(category_ids)} categories", Colors.GREEN)

        books = [
            to_mongo(BookDB(
                title=title, author=author, description=description,
                price=price, category=category_ids[category], stock=stock
            ))
            for title, author, description, price, category, stock in BOOKS
        ]
        await db.books.insert_many(books)
        log(f"✓ Created {len(books)} books", Colors.GREEN)
    finally:
        client.close()

def main():
    parser = argparse.ArgumentParser(description="Seed the bookstore database")
    parser.add_argument("--mongo-url", default=settings.MONGO_URL)
    parser.add_argument("--db-name", default=settings.DB_NAME)
    parser.add_argument("--admin-password", default=os.getenv("ADMIN_PASSWORD", "admin123"))
    args = parser.parse_args()

    log("\nSeeding bookstore database...", Colors.HEADER)
    try:
        asyncio.run(seed(args.mongo_url, args.db_name, args.admin_password))
        log("✓ Seeding complete", Colors.GREEN)
    except Exception as e:
        log(f"❌ Seeding failed: {e}", Colors.FAIL)
        raise SystemExit(1)

if __name__ == "__main__":
    main()
