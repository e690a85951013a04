"""
Collection store for Collectibles application.

Holds the signed-in owner's categories, collection items, wishlist items and
saved reports in memory, and mirrors every change to a persistence adapter
(persistence.DatabaseAdapter or persistence.LocalAdapter).

Rules:
- Local state only changes after the adapter call succeeded. Nothing is
  applied optimistically, so nothing has to be rolled back.
- category_name on items is a copy of the category's name. It is resolved
  from the local categories on every item write, and a category rename
  rewrites it on all referencing items inside the same adapter transaction.
- A category cannot be deleted while any item references it.
- Concurrent writes to the same entity are last-write-wins.

Entities are plain dicts. Snapshots and lookups return copies.
"""

import copy
import logging

from exceptions import (
    CategoryInUse,
    EntityNotFound,
    LoadError,
    NotAuthenticated,
    PersistenceError,
    ValidationError,
)
from utils import empty_to_none, parse_date, parse_datetime, to_decimal

logger = logging.getLogger(__name__)

# Seeded for an owner that has no categories yet
STARTER_CATEGORIES = [
    {'name': 'Books', 'description': 'Literary collections'},
    {'name': 'Coins', 'description': 'Numismatic collection'},
]

CATEGORY_FIELDS = ('name', 'description')
COLLECTION_ITEM_FIELDS = (
    'name', 'description', 'condition', 'price', 'acquisition_date', 'category_id', 'notes'
)
WISHLIST_ITEM_FIELDS = ('name', 'description', 'price', 'category_id')
REPORT_FIELDS = ('name', 'type', 'start_date', 'end_date', 'category_id')
MEDIA_FIELDS = ('name', 'type', 'url', 'thumbnail_url')


# ==================== ROW MAPPING ====================

def _category_from_row(row: dict) -> dict:
    return {
        'id': row['id'],
        'name': row['name'],
        'description': row.get('description') or '',
        'created_at': parse_datetime(row.get('created_at')),
    }


def _media_from_row(row: dict) -> dict:
    return {
        'id': row['id'],
        'name': row['name'],
        'type': row['type'],
        'url': row['url'],
        'thumbnail_url': empty_to_none(row.get('thumbnail_url')),
        'created_at': parse_datetime(row.get('created_at')),
    }


def _resolve_category_name(row: dict, category_names: dict):
    """Current category name, else the joined name, else the stored copy."""
    return (category_names.get(row['category_id'])
            or row.get('joined_category_name')
            or row.get('category_name'))


def _collection_item_from_row(row: dict, category_names: dict, media_rows: list) -> dict:
    return {
        'id': row['id'],
        'name': row['name'],
        'description': row.get('description') or '',
        'condition': row['condition'],
        'price': to_decimal(row['price']),
        'acquisition_date': parse_date(row['acquisition_date']),
        'category_id': row['category_id'],
        'category_name': _resolve_category_name(row, category_names),
        'notes': empty_to_none(row.get('notes')),
        'media_files': [_media_from_row(m) for m in media_rows],
        'created_at': parse_datetime(row.get('created_at')),
    }


def _wishlist_item_from_row(row: dict, category_names: dict) -> dict:
    return {
        'id': row['id'],
        'name': row['name'],
        'description': row.get('description') or '',
        'price': to_decimal(row['price']),
        'category_id': row['category_id'],
        'category_name': _resolve_category_name(row, category_names),
        'created_at': parse_datetime(row.get('created_at')),
    }


def _report_from_row(row: dict) -> dict:
    return {
        'id': row['id'],
        'name': row['name'],
        'type': row['type'],
        'start_date': parse_date(row.get('start_date')),
        'end_date': parse_date(row.get('end_date')),
        'category_id': empty_to_none(row.get('category_id')),
        'created_at': parse_datetime(row.get('created_at')),
    }


def _pick(data: dict, fields: tuple) -> dict:
    return {key: data[key] for key in fields if key in data}


def _find(entities: list, entity_id: str):
    return next((e for e in entities if e['id'] == entity_id), None)


class CollectionStore:
    """
    In-memory collection state for one owner, synchronized with an adapter.

    The store is 'unloaded' until open()/load_all() succeeds and returns to
    'unloaded' on close(). Every mutation requires a loaded store.
    """

    def __init__(self, adapter):
        self.adapter = adapter
        self._owner_id = None
        self._categories = []
        self._collection_items = []
        self._wishlist_items = []
        self._reports = []
        self._listeners = []

    # ==================== STATE ====================

    @property
    def owner_id(self):
        return self._owner_id

    @property
    def is_loaded(self) -> bool:
        return self._owner_id is not None

    @property
    def categories(self) -> list:
        return copy.deepcopy(self._categories)

    @property
    def collection_items(self) -> list:
        return copy.deepcopy(self._collection_items)

    @property
    def wishlist_items(self) -> list:
        return copy.deepcopy(self._wishlist_items)

    @property
    def reports(self) -> list:
        return copy.deepcopy(self._reports)

    def subscribe(self, callback):
        """
        Register callback(store), called after every load, change and close.

        Returns a function that removes the subscription.
        """
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                # Subscriber failures never undo a persisted change
                logger.exception(f"Store subscriber {callback!r} failed")

    def _require_owner(self) -> str:
        if self._owner_id is None:
            raise NotAuthenticated("No active session - sign in first")
        return self._owner_id

    def _category_names(self) -> dict:
        return {c['id']: c['name'] for c in self._categories}

    def _require_category(self, category_id: str) -> dict:
        category = _find(self._categories, category_id)
        if category is None:
            raise ValidationError(f"Category {category_id} not found")
        return category

    # ==================== SESSION LIFECYCLE ====================

    def bind_session(self, session):
        """
        Follow an AuthSession: sign-in loads the owner's data, sign-out clears it.

        Returns a function that stops following the session.
        """
        def on_change(owner_id):
            if owner_id:
                self.open(owner_id)
            else:
                self.close()

        remove = session.add_listener(on_change)
        if session.owner_id:
            self.open(session.owner_id)
        return remove

    def open(self, owner_id: str) -> None:
        """Start a session for owner_id (alias for load_all)."""
        self.load_all(owner_id)

    def load_all(self, owner_id: str) -> None:
        """
        Fetch all collections for owner_id and replace the in-memory state.

        An owner with no categories gets STARTER_CATEGORIES. On failure the
        previous state is kept and LoadError is raised.
        """
        if not owner_id:
            raise NotAuthenticated("Owner id is required to load a collection")

        try:
            category_rows = self.adapter.fetch_all('categories', owner_id)
            item_rows = self.adapter.fetch_all('collection_items', owner_id)
            wishlist_rows = self.adapter.fetch_all('wishlist_items', owner_id)
            report_rows = self.adapter.fetch_all('reports', owner_id)
            media_by_item = {row['id']: self.adapter.fetch_media(row['id']) for row in item_rows}

            if not category_rows:
                with self.adapter.atomic():
                    category_rows = [
                        self.adapter.insert('categories', owner_id, dict(starter))
                        for starter in STARTER_CATEGORIES
                    ]
                logger.info(f"Seeded {len(category_rows)} starter categories for {owner_id}")

            categories = [_category_from_row(row) for row in category_rows]
            names = {c['id']: c['name'] for c in categories}
            collection_items = [
                _collection_item_from_row(row, names, media_by_item.get(row['id'], []))
                for row in item_rows
            ]
            wishlist_items = [_wishlist_item_from_row(row, names) for row in wishlist_rows]
            reports = [_report_from_row(row) for row in report_rows]
        except Exception as e:
            logger.error(f"Failed to load collection for {owner_id}: {e}")
            raise LoadError(f"There was a problem loading the collection data: {e}") from e

        self._owner_id = owner_id
        self._categories = categories
        self._collection_items = collection_items
        self._wishlist_items = wishlist_items
        self._reports = reports
        logger.info(f"Loaded collection for {owner_id}: {len(categories)} categories, "
                    f"{len(collection_items)} items, {len(wishlist_items)} wishlist items, "
                    f"{len(reports)} reports")
        self._notify()

    def close(self) -> None:
        """Discard all in-memory state. Every change is already persisted."""
        owner_id = self._owner_id
        self._owner_id = None
        self._categories = []
        self._collection_items = []
        self._wishlist_items = []
        self._reports = []
        if owner_id is not None:
            logger.info(f"Closed collection for {owner_id}")
        self._notify()

    # ==================== CATEGORIES ====================

    def add_category(self, name: str, description: str = '') -> dict:
        owner_id = self._require_owner()
        data = {'name': name, 'description': description or ''}
        try:
            row = self.adapter.insert('categories', owner_id, data)
        except Exception as e:
            logger.error(f"Failed to add category '{name}': {e}")
            raise PersistenceError(f"Failed to add category '{name}': {e}") from e

        category = _category_from_row(row)
        self._categories.append(category)
        logger.info(f"Store: Added category {category['name']} ({category['id']})")
        self._notify()
        return copy.deepcopy(category)

    def update_category(self, category_id: str, partial: dict) -> dict:
        """
        Merge partial into a category.

        A name change is written to every referencing collection and wishlist
        item in the same transaction as the category itself.
        """
        owner_id = self._require_owner()
        category = _find(self._categories, category_id)
        if category is None:
            raise EntityNotFound(f"Category {category_id} not found")

        data = _pick(partial, CATEGORY_FIELDS)
        new_name = data.get('name')
        rename = new_name is not None and new_name != category['name']

        try:
            with self.adapter.atomic():
                if data:
                    self.adapter.update('categories', owner_id, category_id, data)
                if rename:
                    self.adapter.rename_category_references(owner_id, category_id, new_name)
        except Exception as e:
            logger.error(f"Failed to update category {category_id}: {e}")
            raise PersistenceError(f"Failed to update category: {e}") from e

        category.update(data)
        if rename:
            for item in self._collection_items + self._wishlist_items:
                if item['category_id'] == category_id:
                    item['category_name'] = new_name
            logger.info(f"Store: Renamed category {category_id} to {new_name}")
        self._notify()
        return copy.deepcopy(category)

    def delete_category(self, category_id: str) -> None:
        owner_id = self._require_owner()
        item_count = sum(1 for i in self._collection_items if i['category_id'] == category_id)
        wishlist_count = sum(1 for i in self._wishlist_items if i['category_id'] == category_id)
        if item_count or wishlist_count:
            logger.warning(f"Refusing to delete category {category_id}: still in use")
            raise CategoryInUse(category_id, item_count, wishlist_count)

        try:
            self.adapter.delete('categories', owner_id, category_id)
        except Exception as e:
            logger.error(f"Failed to delete category {category_id}: {e}")
            raise PersistenceError(f"Failed to delete category: {e}") from e

        self._categories = [c for c in self._categories if c['id'] != category_id]
        logger.info(f"Store: Deleted category {category_id}")
        self._notify()

    # ==================== COLLECTION ITEMS ====================

    def add_collection_item(self, data: dict) -> dict:
        """Create an item and one linked media record per entry in data['media_files']."""
        owner_id = self._require_owner()
        category = self._require_category(data.get('category_id'))
        record = _pick(data, COLLECTION_ITEM_FIELDS)
        record['category_name'] = category['name']
        media = data.get('media_files') or []

        try:
            with self.adapter.atomic():
                row = self.adapter.insert('collection_items', owner_id, record)
                media_rows = [
                    self.adapter.insert_media(row['id'], dict(_pick(m, MEDIA_FIELDS), position=position))
                    for position, m in enumerate(media)
                ]
        except Exception as e:
            logger.error(f"Failed to add collection item '{data.get('name')}': {e}")
            raise PersistenceError(f"Failed to add item: {e}") from e

        item = _collection_item_from_row(row, self._category_names(), media_rows)
        self._collection_items.append(item)
        logger.info(f"Store: Added collection item {item['name']} ({item['id']})")
        self._notify()
        return copy.deepcopy(item)

    def update_collection_item(self, item_id: str, partial: dict) -> dict:
        """
        Merge partial into an item.

        When partial carries 'media_files', entries whose id is already
        attached are kept, attached media missing from the list are deleted,
        and entries without a known id are created. Every media record's
        position is its index in the new list. Calls run one at a time, in a
        single transaction.
        """
        owner_id = self._require_owner()
        item = _find(self._collection_items, item_id)
        if item is None:
            raise EntityNotFound(f"Collection item {item_id} not found")

        data = _pick(partial, COLLECTION_ITEM_FIELDS)
        category = self._require_category(data.get('category_id', item['category_id']))
        data['category_name'] = category['name']

        existing_media = {m['id']: m for m in item['media_files']}
        existing_positions = {m['id']: position for position, m in enumerate(item['media_files'])}
        wanted_media = partial.get('media_files')
        if wanted_media is not None:
            wanted_ids = {m.get('id') for m in wanted_media}
            removed = [m for m in item['media_files'] if m['id'] not in wanted_ids]

        try:
            with self.adapter.atomic():
                row = self.adapter.update('collection_items', owner_id, item_id, data)
                if wanted_media is None:
                    media_rows = item['media_files']
                else:
                    for media in removed:
                        self.adapter.delete_media(media['id'])
                    media_rows = []
                    for position, media in enumerate(wanted_media):
                        media_id = media.get('id')
                        if media_id in existing_media:
                            if existing_positions[media_id] != position:
                                self.adapter.update_media(media_id, {'position': position})
                            media_rows.append(existing_media[media_id])
                        else:
                            record = dict(_pick(media, MEDIA_FIELDS), position=position)
                            media_rows.append(self.adapter.insert_media(item_id, record))
        except Exception as e:
            logger.error(f"Failed to update collection item {item_id}: {e}")
            raise PersistenceError(f"Failed to update item: {e}") from e

        updated = _collection_item_from_row(row, self._category_names(), media_rows)
        self._collection_items = [updated if i['id'] == item_id else i for i in self._collection_items]
        logger.info(f"Store: Updated collection item {item_id}")
        self._notify()
        return copy.deepcopy(updated)

    def delete_collection_item(self, item_id: str) -> bool:
        """
        Delete an item and its media.

        Deleting an item that is already gone is a no-op. Returns True if
        the item was present.
        """
        owner_id = self._require_owner()
        try:
            self.adapter.delete('collection_items', owner_id, item_id)
        except Exception as e:
            logger.error(f"Failed to delete collection item {item_id}: {e}")
            raise PersistenceError(f"Failed to delete item: {e}") from e

        remaining = [i for i in self._collection_items if i['id'] != item_id]
        removed = len(remaining) != len(self._collection_items)
        self._collection_items = remaining
        if removed:
            logger.info(f"Store: Deleted collection item {item_id}")
            self._notify()
        return removed

    # ==================== WISHLIST ITEMS ====================

    def add_wishlist_item(self, data: dict) -> dict:
        owner_id = self._require_owner()
        category = self._require_category(data.get('category_id'))
        record = _pick(data, WISHLIST_ITEM_FIELDS)
        record['category_name'] = category['name']

        try:
            row = self.adapter.insert('wishlist_items', owner_id, record)
        except Exception as e:
            logger.error(f"Failed to add wishlist item '{data.get('name')}': {e}")
            raise PersistenceError(f"Failed to add wishlist item: {e}") from e

        item = _wishlist_item_from_row(row, self._category_names())
        self._wishlist_items.append(item)
        logger.info(f"Store: Added wishlist item {item['name']} ({item['id']})")
        self._notify()
        return copy.deepcopy(item)

    def update_wishlist_item(self, item_id: str, partial: dict) -> dict:
        owner_id = self._require_owner()
        item = _find(self._wishlist_items, item_id)
        if item is None:
            raise EntityNotFound(f"Wishlist item {item_id} not found")

        data = _pick(partial, WISHLIST_ITEM_FIELDS)
        category = self._require_category(data.get('category_id', item['category_id']))
        data['category_name'] = category['name']

        try:
            row = self.adapter.update('wishlist_items', owner_id, item_id, data)
        except Exception as e:
            logger.error(f"Failed to update wishlist item {item_id}: {e}")
            raise PersistenceError(f"Failed to update wishlist item: {e}") from e

        updated = _wishlist_item_from_row(row, self._category_names())
        self._wishlist_items = [updated if i['id'] == item_id else i for i in self._wishlist_items]
        logger.info(f"Store: Updated wishlist item {item_id}")
        self._notify()
        return copy.deepcopy(updated)

    def delete_wishlist_item(self, item_id: str) -> bool:
        owner_id = self._require_owner()
        try:
            self.adapter.delete('wishlist_items', owner_id, item_id)
        except Exception as e:
            logger.error(f"Failed to delete wishlist item {item_id}: {e}")
            raise PersistenceError(f"Failed to delete wishlist item: {e}") from e

        remaining = [i for i in self._wishlist_items if i['id'] != item_id]
        removed = len(remaining) != len(self._wishlist_items)
        self._wishlist_items = remaining
        if removed:
            logger.info(f"Store: Deleted wishlist item {item_id}")
            self._notify()
        return removed

    # ==================== REPORTS ====================

    def add_report(self, descriptor: dict) -> dict:
        owner_id = self._require_owner()
        record = _pick(descriptor, REPORT_FIELDS)
        try:
            row = self.adapter.insert('reports', owner_id, record)
        except Exception as e:
            logger.error(f"Failed to add report '{descriptor.get('name')}': {e}")
            raise PersistenceError(f"Failed to create report: {e}") from e

        report = _report_from_row(row)
        self._reports.append(report)
        logger.info(f"Store: Added report {report['name']} ({report['id']})")
        self._notify()
        return copy.deepcopy(report)

    def delete_report(self, report_id: str) -> bool:
        owner_id = self._require_owner()
        try:
            self.adapter.delete('reports', owner_id, report_id)
        except Exception as e:
            logger.error(f"Failed to delete report {report_id}: {e}")
            raise PersistenceError(f"Failed to delete report: {e}") from e

        remaining = [r for r in self._reports if r['id'] != report_id]
        removed = len(remaining) != len(self._reports)
        self._reports = remaining
        if removed:
            logger.info(f"Store: Deleted report {report_id}")
            self._notify()
        return removed

    # ==================== LOOKUPS ====================

    def get_category_by_id(self, category_id: str):
        return copy.deepcopy(_find(self._categories, category_id))

    def get_collection_item_by_id(self, item_id: str):
        return copy.deepcopy(_find(self._collection_items, item_id))

    def get_wishlist_item_by_id(self, item_id: str):
        return copy.deepcopy(_find(self._wishlist_items, item_id))

    def get_report_by_id(self, report_id: str):
        return copy.deepcopy(_find(self._reports, report_id))
