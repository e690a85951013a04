"""
Tests for database_manager.py

CRUD operations against an in-memory SQLite database.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from database_model import Category, CollectionItem, MediaFile, WishlistItem
import database_manager as db


@pytest.fixture(scope="function")
def setup_test_db():
    """Fresh in-memory database for each test."""
    db.initialize_connection(engine="sqlite", database_name=":memory:")
    db.create_tables_if_not_exist()
    yield
    db.close_connection()


def _create_category(category_id="cat123", owner_id="owner1", name="Books"):
    return db.create_category({
        "id": category_id,
        "owner_id": owner_id,
        "name": name,
        "description": "Literary collections",
        "created_at": datetime.now()
    })


def _create_item(item_id="item123", category_id="cat123", owner_id="owner1"):
    return db.create_collection_item({
        "id": item_id,
        "owner_id": owner_id,
        "name": "Dune",
        "description": "",
        "condition": "good",
        "price": Decimal("12.50"),
        "acquisition_date": date(2024, 1, 1),
        "category_id": category_id,
        "category_name": "Books",
        "notes": None,
        "created_at": datetime.now()
    })


def test_check_connection(setup_test_db):
    assert db.check_connection() is True


def test_initialize_connection_rejects_unknown_engine():
    with pytest.raises(ValueError, match="Unsupported database engine"):
        db.initialize_connection(engine="oracle")


def test_categories_are_scoped_to_owner(setup_test_db):
    """Each owner only sees their own categories."""
    _create_category("cat1", "owner1", "Books")
    _create_category("cat2", "owner2", "Coins")

    rows = db.get_categories_by_owner("owner1")
    assert [row["name"] for row in rows] == ["Books"]
    assert [row["name"] for row in db.get_categories_by_owner("owner2")] == ["Coins"]


def test_collection_items_carry_joined_category_name(setup_test_db):
    """Item rows include the current category name from the join."""
    _create_category()
    _create_item()
    db.update_category("owner1", "cat123", {"name": "Novels"})

    rows = db.get_collection_items_by_owner("owner1")
    assert len(rows) == 1
    assert rows[0]["category_id"] == "cat123"
    assert rows[0]["category_name"] == "Books"
    assert rows[0]["joined_category_name"] == "Novels"
    assert rows[0]["price"] == Decimal("12.50")
    assert rows[0]["acquisition_date"] == date(2024, 1, 1)


def test_update_category_name_references(setup_test_db):
    """Renaming rewrites category_name only on items of that category."""
    _create_category("cat1", name="Books")
    _create_category("cat2", name="Coins")
    _create_item("item1", "cat1")
    _create_item("item2", "cat2")
    db.create_wishlist_item({
        "id": "wish1",
        "owner_id": "owner1",
        "name": "Foundation",
        "description": "",
        "price": Decimal("30.00"),
        "category_id": "cat1",
        "category_name": "Books",
        "created_at": datetime.now()
    })

    counts = db.update_category_name_references("owner1", "cat1", "Novels")

    assert counts == {"collection_items": 1, "wishlist_items": 1}
    assert CollectionItem.get_by_id("item1").category_name == "Novels"
    assert CollectionItem.get_by_id("item2").category_name == "Books"
    assert WishlistItem.get_by_id("wish1").category_name == "Novels"


def test_delete_collection_item_removes_media(setup_test_db):
    """Deleting an item also deletes its media files; a second delete is a no-op."""
    _create_category()
    _create_item()
    db.create_media_file({
        "id": "media1",
        "item_id": "item123",
        "name": "cover.jpg",
        "type": "image",
        "url": "https://example.com/cover.jpg",
        "thumbnail_url": None,
        "created_at": datetime.now()
    })
    assert len(db.get_media_files_by_item("item123")) == 1

    assert db.delete_collection_item("owner1", "item123") == 1
    assert MediaFile.select().count() == 0
    assert db.delete_collection_item("owner1", "item123") == 0


def test_media_files_follow_position_not_id(setup_test_db):
    """Media created in the same second come back in position order."""
    _create_category()
    _create_item()
    created_at = datetime(2024, 1, 1, 12, 0, 0)
    for media_id, position in (("zzz", 0), ("aaa", 1), ("mmm", 2)):
        db.create_media_file({
            "id": media_id,
            "item_id": "item123",
            "name": f"{media_id}.jpg",
            "type": "image",
            "url": f"https://example.com/{media_id}.jpg",
            "position": position,
            "created_at": created_at
        })

    assert [row["id"] for row in db.get_media_files_by_item("item123")] == ["zzz", "aaa", "mmm"]

    assert db.update_media_file("zzz", {"position": 3}) == 1
    assert [row["id"] for row in db.get_media_files_by_item("item123")] == ["aaa", "mmm", "zzz"]


def test_delete_category_returns_row_count(setup_test_db):
    _create_category()
    assert db.delete_category("owner1", "cat123") == 1
    assert Category.select().count() == 0
    assert db.delete_category("owner1", "cat123") == 0


def test_reports_crud(setup_test_db):
    db.create_report({
        "id": "rep1",
        "owner_id": "owner1",
        "name": "January",
        "type": "time",
        "start_date": date(2024, 1, 1),
        "end_date": date(2024, 1, 31),
        "category_id": None,
        "created_at": datetime.now()
    })
    rows = db.get_reports_by_owner("owner1")
    assert rows[0]["start_date"] == date(2024, 1, 1)

    db.update_report("owner1", "rep1", {"name": "Jan"})
    assert db.get_reports_by_owner("owner1")[0]["name"] == "Jan"

    assert db.delete_report("owner1", "rep1") == 1
    assert db.get_reports_by_owner("owner1") == []
