"""
Persistence adapters for the collection store.

Both adapters expose the same interface over four owner-scoped resources
(categories, collection_items, wishlist_items, reports) plus the media_files
child resource keyed by collection item id:

- DatabaseAdapter: PeeWee-backed store via database_manager.py
- LocalAdapter: in-memory rows, optionally mirrored to a JSON file with one
  key per '{owner_id}_{resource}'

Adapters assign record ids (utils.generate_uid) and created_at timestamps.
They return plain row dicts; mapping rows to entities is done by
collection_store.py.
"""

import copy
import json
import logging
import os
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

from playhouse.shortcuts import model_to_dict

import database_manager as db
from database_model import database
from utils import generate_uid

logger = logging.getLogger(__name__)

RESOURCES = ('categories', 'collection_items', 'wishlist_items', 'reports')


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


class PersistenceAdapter:
    """Interface shared by all persistence adapters."""

    name = 'base'

    def fetch_all(self, resource: str, owner_id: str) -> list:
        raise NotImplementedError

    def insert(self, resource: str, owner_id: str, data: dict) -> dict:
        raise NotImplementedError

    def update(self, resource: str, owner_id: str, record_id: str, data: dict) -> dict:
        raise NotImplementedError

    def delete(self, resource: str, owner_id: str, record_id: str) -> int:
        """Delete a record. Deleting an absent record returns 0."""
        raise NotImplementedError

    def rename_category_references(self, owner_id: str, category_id: str, name: str) -> dict:
        """Set category_name on every item referencing category_id."""
        raise NotImplementedError

    def fetch_media(self, item_id: str) -> list:
        """Media rows of an item, ordered by position."""
        raise NotImplementedError

    def insert_media(self, item_id: str, data: dict) -> dict:
        raise NotImplementedError

    def update_media(self, media_id: str, data: dict) -> int:
        raise NotImplementedError

    def delete_media(self, media_id: str) -> int:
        raise NotImplementedError

    def atomic(self):
        """Context manager grouping several calls into one transaction."""
        raise NotImplementedError


def _check_resource(resource: str) -> None:
    if resource not in RESOURCES:
        raise ValueError(f"Unknown resource: {resource}")


# ==================== DATABASE ADAPTER ====================

class DatabaseAdapter(PersistenceAdapter):
    """Adapter for the relational store managed by database_manager.py."""

    name = 'database'

    _FETCH = {
        'categories': db.get_categories_by_owner,
        'collection_items': db.get_collection_items_by_owner,
        'wishlist_items': db.get_wishlist_items_by_owner,
        'reports': db.get_reports_by_owner,
    }
    _CREATE = {
        'categories': db.create_category,
        'collection_items': db.create_collection_item,
        'wishlist_items': db.create_wishlist_item,
        'reports': db.create_report,
    }
    _UPDATE = {
        'categories': db.update_category,
        'collection_items': db.update_collection_item,
        'wishlist_items': db.update_wishlist_item,
        'reports': db.update_report,
    }
    _DELETE = {
        'categories': db.delete_category,
        'collection_items': db.delete_collection_item,
        'wishlist_items': db.delete_wishlist_item,
        'reports': db.delete_report,
    }

    def fetch_all(self, resource, owner_id):
        _check_resource(resource)
        return self._FETCH[resource](owner_id)

    def insert(self, resource, owner_id, data):
        _check_resource(resource)
        record = dict(data, id=generate_uid(), owner_id=owner_id, created_at=_now())
        return model_to_dict(self._CREATE[resource](record), recurse=False)

    def update(self, resource, owner_id, record_id, data):
        _check_resource(resource)
        return model_to_dict(self._UPDATE[resource](owner_id, record_id, data), recurse=False)

    def delete(self, resource, owner_id, record_id):
        _check_resource(resource)
        return self._DELETE[resource](owner_id, record_id)

    def rename_category_references(self, owner_id, category_id, name):
        return db.update_category_name_references(owner_id, category_id, name)

    def fetch_media(self, item_id):
        return db.get_media_files_by_item(item_id)

    def insert_media(self, item_id, data):
        record = dict(data, id=generate_uid(), item_id=item_id, created_at=_now())
        return model_to_dict(db.create_media_file(record), recurse=False)

    def update_media(self, media_id, data):
        return db.update_media_file(media_id, data)

    def delete_media(self, media_id):
        return db.delete_media_file(media_id)

    def atomic(self):
        return database.atomic()


# ==================== LOCAL ADAPTER ====================

def _json_default(value):
    """Serialize dates and amounts for the local JSON file."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


class LocalAdapter(PersistenceAdapter):
    """
    In-memory adapter, optionally backed by a JSON file.

    Rows are kept per '{owner_id}_{resource}' key. Media rows are kept under
    'media_files' keyed by item id. When a path is given the whole state is
    rewritten to disk after every successful write (or at the end of the
    outermost atomic() block).
    """

    name = 'local'

    def __init__(self, path: str = None):
        self.path = path
        self._data = {'media_files': {}}
        self._depth = 0
        if path and os.path.exists(path):
            self._load()

    def _load(self) -> None:
        try:
            with open(self.path, 'r') as f:
                self._data = json.load(f)
            self._data.setdefault('media_files', {})
            logger.info(f"Local collection data loaded from {self.path}")
        except Exception as e:
            logger.error(f"Failed to read {self.path}: {e}")
            raise

    def _save(self) -> None:
        if not self.path or self._depth > 0:
            return
        try:
            with open(self.path, 'w') as f:
                json.dump(self._data, f, indent=2, default=_json_default)
        except Exception as e:
            logger.error(f"Failed to write {self.path}: {e}")
            raise

    def _rows(self, resource: str, owner_id: str) -> list:
        _check_resource(resource)
        return self._data.setdefault(f"{owner_id}_{resource}", [])

    def _find(self, resource, owner_id, record_id) -> dict:
        for row in self._rows(resource, owner_id):
            if row['id'] == record_id:
                return row
        raise KeyError(f"{resource} record {record_id} not found")

    def fetch_all(self, resource, owner_id):
        return copy.deepcopy(self._rows(resource, owner_id))

    def insert(self, resource, owner_id, data):
        rows = self._rows(resource, owner_id)
        if resource == 'categories':
            # Same rule as the (owner_id, name) unique index in the database
            if any(row['name'] == data.get('name') for row in rows):
                raise ValueError(f"Category '{data.get('name')}' already exists")
        row = dict(data, id=generate_uid(), owner_id=owner_id, created_at=_now())
        rows.append(row)
        self._save()
        return copy.deepcopy(row)

    def update(self, resource, owner_id, record_id, data):
        row = self._find(resource, owner_id, record_id)
        row.update(data)
        self._save()
        return copy.deepcopy(row)

    def delete(self, resource, owner_id, record_id):
        rows = self._rows(resource, owner_id)
        remaining = [row for row in rows if row['id'] != record_id]
        count = len(rows) - len(remaining)
        rows[:] = remaining
        if resource == 'collection_items':
            self._data['media_files'].pop(record_id, None)
        self._save()
        return count

    def rename_category_references(self, owner_id, category_id, name):
        counts = {}
        for resource in ('collection_items', 'wishlist_items'):
            matching = [row for row in self._rows(resource, owner_id)
                        if row['category_id'] == category_id]
            for row in matching:
                row['category_name'] = name
            counts[resource] = len(matching)
        self._save()
        return counts

    def fetch_media(self, item_id):
        rows = sorted(self._data['media_files'].get(item_id, []),
                      key=lambda row: row.get('position', 0))
        return copy.deepcopy(rows)

    def insert_media(self, item_id, data):
        row = dict(data, id=generate_uid(), item_id=item_id, created_at=_now())
        self._data['media_files'].setdefault(item_id, []).append(row)
        self._save()
        return copy.deepcopy(row)

    def update_media(self, media_id, data):
        count = 0
        for rows in self._data['media_files'].values():
            for row in rows:
                if row['id'] == media_id:
                    row.update(data)
                    count += 1
        self._save()
        return count

    def delete_media(self, media_id):
        count = 0
        for rows in self._data['media_files'].values():
            remaining = [row for row in rows if row['id'] != media_id]
            count += len(rows) - len(remaining)
            rows[:] = remaining
        self._save()
        return count

    @contextmanager
    def atomic(self):
        snapshot = copy.deepcopy(self._data)
        self._depth += 1
        try:
            yield self
        except Exception:
            self._data = snapshot
            raise
        finally:
            self._depth -= 1
        self._save()
