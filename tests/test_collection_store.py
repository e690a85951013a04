"""
Tests for collection_store.py

Runs the store against the in-memory LocalAdapter. Adapter failures are
simulated with FailingAdapter.
"""

import pytest
from datetime import date
from decimal import Decimal
from collection_store import CollectionStore, STARTER_CATEGORIES
from exceptions import (
    CategoryInUse, EntityNotFound, LoadError, NotAuthenticated,
    PersistenceError, ValidationError
)
from persistence import LocalAdapter
from session import AuthSession


class FailingAdapter(LocalAdapter):
    """LocalAdapter whose listed methods raise, optionally only for one resource."""

    def __init__(self):
        super().__init__()
        self.fail_on = set()

    def _maybe_fail(self, method, resource=None):
        if method in self.fail_on or (method, resource) in self.fail_on:
            raise RuntimeError(f"remote {method} failed")

    def fetch_all(self, resource, owner_id):
        self._maybe_fail('fetch_all', resource)
        return super().fetch_all(resource, owner_id)

    def insert(self, resource, owner_id, data):
        self._maybe_fail('insert', resource)
        return super().insert(resource, owner_id, data)

    def update(self, resource, owner_id, record_id, data):
        self._maybe_fail('update', resource)
        return super().update(resource, owner_id, record_id, data)

    def delete(self, resource, owner_id, record_id):
        self._maybe_fail('delete', resource)
        return super().delete(resource, owner_id, record_id)

    def rename_category_references(self, owner_id, category_id, name):
        self._maybe_fail('rename_category_references')
        return super().rename_category_references(owner_id, category_id, name)

    def insert_media(self, item_id, data):
        self._maybe_fail('insert_media')
        return super().insert_media(item_id, data)

    def delete_media(self, media_id):
        self._maybe_fail('delete_media')
        return super().delete_media(media_id)


@pytest.fixture
def adapter():
    return FailingAdapter()


@pytest.fixture
def store(adapter):
    """Store opened for owner1 (seeded with the starter categories)."""
    store = CollectionStore(adapter)
    store.open("owner1")
    return store


def _dune(category_id, **overrides):
    data = {
        "name": "Dune",
        "description": "First edition",
        "condition": "good",
        "price": Decimal("12.50"),
        "acquisition_date": date(2024, 1, 1),
        "category_id": category_id,
        "notes": None,
        "media_files": [],
    }
    data.update(overrides)
    return data


def _category_named(store, name):
    return next(c for c in store.categories if c["name"] == name)


# ==================== LOAD / SESSION ====================

def test_load_all_seeds_starter_categories_for_new_owner(store, adapter):
    """A first-time owner gets exactly the starter categories and no items."""
    assert sorted(c["name"] for c in store.categories) == sorted(s["name"] for s in STARTER_CATEGORIES)
    assert store.collection_items == []
    assert store.wishlist_items == []
    assert store.reports == []
    assert len(adapter.fetch_all("categories", "owner1")) == len(STARTER_CATEGORIES)


def test_load_all_does_not_reseed_existing_owner(adapter):
    store = CollectionStore(adapter)
    store.open("owner1")
    store.add_category("Stamps")
    store.close()

    store.open("owner1")
    assert len(store.categories) == len(STARTER_CATEGORIES) + 1


def test_load_all_resolves_category_name_from_loaded_categories(adapter):
    """A stale category_name in persistence is replaced by the category's current name."""
    store = CollectionStore(adapter)
    store.open("owner1")
    books = _category_named(store, "Books")
    item = store.add_collection_item(_dune(books["id"]))
    adapter.update("collection_items", "owner1", item["id"], {"category_name": "Stale"})

    store.open("owner1")
    assert store.get_collection_item_by_id(item["id"])["category_name"] == "Books"


def test_load_failure_keeps_previous_state(adapter):
    store = CollectionStore(adapter)
    adapter.fail_on.add("fetch_all")

    with pytest.raises(LoadError):
        store.open("owner1")

    assert store.is_loaded is False
    assert store.categories == []


def test_close_clears_everything(store):
    store.add_category("Stamps")
    store.close()
    assert store.is_loaded is False
    assert store.owner_id is None
    assert store.categories == []


def test_operations_require_session(adapter):
    store = CollectionStore(adapter)
    with pytest.raises(NotAuthenticated):
        store.add_category("Stamps")
    with pytest.raises(NotAuthenticated):
        store.delete_collection_item("anything")


def test_bind_session_follows_sign_in_and_out(adapter):
    session = AuthSession()
    store = CollectionStore(adapter)
    store.bind_session(session)

    session.sign_in("owner1")
    assert store.owner_id == "owner1"
    assert len(store.categories) == len(STARTER_CATEGORIES)

    session.sign_out()
    assert store.is_loaded is False
    assert store.categories == []


def test_failed_sign_in_keeps_session_and_store_together(adapter):
    """A sign-in whose load fails leaves the previous owner active and can be retried."""
    session = AuthSession()
    store = CollectionStore(adapter)
    store.bind_session(session)
    session.sign_in("owner1")

    adapter.fail_on.add("fetch_all")
    with pytest.raises(LoadError):
        session.sign_in("owner2")

    assert session.owner_id == "owner1"
    assert store.owner_id == "owner1"

    adapter.fail_on.clear()
    session.sign_in("owner2")
    assert session.owner_id == "owner2"
    assert store.owner_id == "owner2"


def test_subscribers_are_notified_and_can_unsubscribe(store):
    calls = []
    unsubscribe = store.subscribe(lambda s: calls.append(len(s.categories)))

    store.add_category("Stamps")
    unsubscribe()
    store.add_category("Comics")

    assert calls == [len(STARTER_CATEGORIES) + 1]


# ==================== CATEGORIES ====================

def test_add_category_failure_leaves_state_unchanged(store, adapter):
    adapter.fail_on.add(("insert", "categories"))
    before = store.categories

    with pytest.raises(PersistenceError):
        store.add_category("Stamps")

    assert store.categories == before


def test_rename_cascades_only_to_items_in_category(store):
    """Renaming Books updates Books items and wishlist items, nothing else."""
    books = _category_named(store, "Books")
    coins = _category_named(store, "Coins")
    dune = store.add_collection_item(_dune(books["id"]))
    penny = store.add_collection_item(_dune(coins["id"], name="Penny"))
    wish = store.add_wishlist_item({
        "name": "Foundation", "description": "", "price": Decimal("30"), "category_id": books["id"]
    })

    store.update_category(books["id"], {"name": "Novels"})

    assert store.get_category_by_id(books["id"])["name"] == "Novels"
    assert store.get_collection_item_by_id(dune["id"])["category_name"] == "Novels"
    assert store.get_wishlist_item_by_id(wish["id"])["category_name"] == "Novels"
    assert store.get_collection_item_by_id(penny["id"])["category_name"] == "Coins"


def test_rename_cascade_is_persisted(store, adapter):
    books = _category_named(store, "Books")
    store.add_collection_item(_dune(books["id"]))

    store.update_category(books["id"], {"name": "Novels"})

    rows = adapter.fetch_all("collection_items", "owner1")
    assert rows[0]["category_name"] == "Novels"


def test_rename_cascade_failure_rolls_back_category_rename(store, adapter):
    """If the cascade write fails, neither the category nor the items change."""
    books = _category_named(store, "Books")
    dune = store.add_collection_item(_dune(books["id"]))
    adapter.fail_on.add("rename_category_references")

    with pytest.raises(PersistenceError):
        store.update_category(books["id"], {"name": "Novels"})

    assert store.get_category_by_id(books["id"])["name"] == "Books"
    assert store.get_collection_item_by_id(dune["id"])["category_name"] == "Books"
    persisted = {row["id"]: row["name"] for row in adapter.fetch_all("categories", "owner1")}
    assert persisted[books["id"]] == "Books"


def test_update_category_description_only(store):
    books = _category_named(store, "Books")
    updated = store.update_category(books["id"], {"description": "Paper"})
    assert updated["description"] == "Paper"
    assert updated["name"] == "Books"


def test_update_unknown_category(store):
    with pytest.raises(EntityNotFound):
        store.update_category("missing", {"name": "X"})


def test_delete_category_in_use_fails_without_remote_call(store, adapter):
    books = _category_named(store, "Books")
    dune = store.add_collection_item(_dune(books["id"]))
    adapter.fail_on.add("delete")  # would raise if the store called the adapter

    with pytest.raises(CategoryInUse) as excinfo:
        store.delete_category(books["id"])

    assert excinfo.value.item_count == 1
    assert store.get_category_by_id(books["id"]) is not None
    assert store.get_collection_item_by_id(dune["id"]) == dune


def test_delete_category_referenced_by_wishlist_only(store):
    coins = _category_named(store, "Coins")
    store.add_wishlist_item({"name": "Doubloon", "description": "", "price": 100, "category_id": coins["id"]})
    with pytest.raises(CategoryInUse):
        store.delete_category(coins["id"])


def test_delete_unused_category(store, adapter):
    coins = _category_named(store, "Coins")
    store.delete_category(coins["id"])
    assert store.get_category_by_id(coins["id"]) is None
    assert coins["id"] not in [row["id"] for row in adapter.fetch_all("categories", "owner1")]


# ==================== COLLECTION ITEMS ====================

def test_add_then_get_round_trip(store):
    books = _category_named(store, "Books")
    data = _dune(books["id"], notes="Signed")

    created = store.add_collection_item(data)
    fetched = store.get_collection_item_by_id(created["id"])

    for key, value in data.items():
        assert fetched[key] == value
    assert fetched["category_name"] == "Books"
    assert fetched["created_at"] is not None


def test_add_item_with_unknown_category(store):
    with pytest.raises(ValidationError):
        store.add_collection_item(_dune("missing"))
    assert store.collection_items == []


def test_add_item_persists_media_as_linked_records(store, adapter):
    books = _category_named(store, "Books")
    media = [
        {"name": "cover.jpg", "type": "image", "url": "https://example.com/cover.jpg", "thumbnail_url": None},
        {"name": "review.pdf", "type": "document", "url": "https://example.com/review.pdf", "thumbnail_url": None},
    ]
    item = store.add_collection_item(_dune(books["id"], media_files=media))

    assert [m["name"] for m in item["media_files"]] == ["cover.jpg", "review.pdf"]
    assert all(m["id"] for m in item["media_files"])
    assert len(adapter.fetch_media(item["id"])) == 2


def test_update_item_reconciles_media(store, adapter):
    """Kept media stay, dropped media are deleted, new media are created."""
    books = _category_named(store, "Books")
    media = [
        {"name": "a.jpg", "type": "image", "url": "https://example.com/a.jpg"},
        {"name": "b.jpg", "type": "image", "url": "https://example.com/b.jpg"},
    ]
    item = store.add_collection_item(_dune(books["id"], media_files=media))
    kept = item["media_files"][0]

    updated = store.update_collection_item(item["id"], {
        "media_files": [kept, {"name": "c.mp4", "type": "video", "url": "https://example.com/c.mp4"}]
    })

    assert [m["name"] for m in updated["media_files"]] == ["a.jpg", "c.mp4"]
    assert updated["media_files"][0]["id"] == kept["id"]
    persisted = sorted(m["name"] for m in adapter.fetch_media(item["id"]))
    assert persisted == ["a.jpg", "c.mp4"]


def test_update_item_without_media_key_keeps_media(store):
    books = _category_named(store, "Books")
    item = store.add_collection_item(_dune(books["id"], media_files=[
        {"name": "a.jpg", "type": "image", "url": "https://example.com/a.jpg"}
    ]))
    updated = store.update_collection_item(item["id"], {"price": Decimal("15.00")})
    assert updated["price"] == Decimal("15.00")
    assert updated["media_files"] == item["media_files"]


def test_update_item_media_failure_changes_nothing(store, adapter):
    books = _category_named(store, "Books")
    item = store.add_collection_item(_dune(books["id"], media_files=[
        {"name": "a.jpg", "type": "image", "url": "https://example.com/a.jpg"}
    ]))
    adapter.fail_on.add("insert_media")

    with pytest.raises(PersistenceError):
        store.update_collection_item(item["id"], {
            "name": "Dune Messiah",
            "media_files": [{"name": "b.jpg", "type": "image", "url": "https://example.com/b.jpg"}]
        })

    assert store.get_collection_item_by_id(item["id"]) == item
    assert [m["name"] for m in adapter.fetch_media(item["id"])] == ["a.jpg"]
    assert adapter.fetch_all("collection_items", "owner1")[0]["name"] == "Dune"


def test_update_item_category_refreshes_category_name(store):
    books = _category_named(store, "Books")
    coins = _category_named(store, "Coins")
    item = store.add_collection_item(_dune(books["id"]))

    updated = store.update_collection_item(item["id"], {"category_id": coins["id"]})
    assert updated["category_name"] == "Coins"

    with pytest.raises(ValidationError):
        store.update_collection_item(item["id"], {"category_id": "missing"})


def test_update_unknown_item(store):
    with pytest.raises(EntityNotFound):
        store.update_collection_item("missing", {"name": "X"})


def test_delete_item_twice_is_noop(store):
    books = _category_named(store, "Books")
    item = store.add_collection_item(_dune(books["id"]))

    assert store.delete_collection_item(item["id"]) is True
    before = store.collection_items
    assert store.delete_collection_item(item["id"]) is False
    assert store.collection_items == before == []


def test_delete_item_removes_media(store, adapter):
    books = _category_named(store, "Books")
    item = store.add_collection_item(_dune(books["id"], media_files=[
        {"name": "a.jpg", "type": "image", "url": "https://example.com/a.jpg"}
    ]))
    store.delete_collection_item(item["id"])
    assert adapter.fetch_media(item["id"]) == []


def test_delete_failure_keeps_item(store, adapter):
    books = _category_named(store, "Books")
    item = store.add_collection_item(_dune(books["id"]))
    adapter.fail_on.add(("delete", "collection_items"))

    with pytest.raises(PersistenceError):
        store.delete_collection_item(item["id"])
    assert store.get_collection_item_by_id(item["id"]) is not None


def test_snapshots_are_copies(store):
    store.categories[0]["name"] = "Hacked"
    assert "Hacked" not in [c["name"] for c in store.categories]


# ==================== WISHLIST ====================

def test_wishlist_crud(store):
    coins = _category_named(store, "Coins")
    item = store.add_wishlist_item({
        "name": "Doubloon", "description": "Spanish gold", "price": Decimal("100.00"), "category_id": coins["id"]
    })
    assert item["category_name"] == "Coins"

    updated = store.update_wishlist_item(item["id"], {"price": Decimal("90.00")})
    assert updated["price"] == Decimal("90.00")
    assert updated["description"] == "Spanish gold"

    assert store.delete_wishlist_item(item["id"]) is True
    assert store.delete_wishlist_item(item["id"]) is False
    assert store.get_wishlist_item_by_id(item["id"]) is None


# ==================== REPORTS ====================

def test_reports_add_and_delete(store):
    report = store.add_report({
        "name": "January", "type": "time",
        "start_date": date(2024, 1, 1), "end_date": date(2024, 1, 31), "category_id": None
    })
    assert store.get_report_by_id(report["id"])["start_date"] == date(2024, 1, 1)

    assert store.delete_report(report["id"]) is True
    assert store.reports == []
