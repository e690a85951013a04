"""
Business logic for Collectibles application.

- Configuration: database config file, storage adapter selection
- Validation of form input before it reaches collection_store.py
- Reports: time-range presets and report generation over a store snapshot
- Dashboard summary, search, filter and sort helpers

Functions here never call the persistence layer directly for entity data;
all reads and writes go through a CollectionStore instance.
"""

import calendar
import json
import logging
import os
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import database_manager as db
from exceptions import ValidationError
from persistence import DatabaseAdapter, LocalAdapter
from utils import empty_to_none, parse_date, to_decimal, media_type_from_mime

logger = logging.getLogger(__name__)

CONDITIONS = ['mint', 'near-mint', 'excellent', 'very-good', 'good', 'fair', 'poor']
MEDIA_TYPES = ['image', 'video', 'audio', 'document']
REPORT_TYPES = ['time', 'category']
TIME_RANGES = ['week', 'month', 'quarter', 'year', 'custom']
SORT_ORDERS = ['name', 'price', 'date']

# Try multiple paths for database config file (Docker vs local development)
DB_CONFIG_PATHS = [
    "/app/data/collectibles_db_config.json",  # Docker container path
    "./collectibles_db_config.json",           # Local development (project root)
    "./data/collectibles_db_config.json"       # Local development (data subdirectory)
]

DEFAULT_SQLITE_PATH = "./collectibles.db"


# ==================== CONFIGURATION ====================

def _get_config_file_path() -> str:
    """
    Get the path to the database configuration file.

    Returns the first existing path from DB_CONFIG_PATHS, otherwise the
    Docker path if /app/data exists, otherwise the project root path.
    """
    for path in DB_CONFIG_PATHS:
        if os.path.exists(path):
            return path

    if os.path.exists("/app/data"):
        return DB_CONFIG_PATHS[0]  # Docker
    else:
        return DB_CONFIG_PATHS[1]  # Local dev


def load_database_config() -> Optional[dict]:
    """
    Load database configuration from collectibles_db_config.json.

    Returns:
        dict with keys: db_engine, db_host, db_port, db_name, db_user,
        db_password, db_pool_size. None if the file doesn't exist.
    """
    config_file = _get_config_file_path()

    if not os.path.exists(config_file):
        return None

    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
            logger.info(f"Database configuration loaded from {config_file}")
            return config
    except Exception as e:
        logger.error(f"Failed to read {config_file}: {e}")
        return None


def initialize_database(config: Optional[dict] = None) -> None:
    """
    Connect to the configured database and create tables if needed.

    Without a config file this falls back to SQLite at DEFAULT_SQLITE_PATH.
    """
    if config is None:
        config = load_database_config()

    if config is None:
        logger.warning(f"collectibles_db_config.json not found - using SQLite at {DEFAULT_SQLITE_PATH}")
        config = {'db_engine': 'sqlite', 'db_name': DEFAULT_SQLITE_PATH}

    engine = config.get('db_engine', 'mysql')
    logger.info(f"Connecting to {engine} database: {config.get('db_name')}")

    db.initialize_connection(
        engine=engine,
        host=config.get('db_host', 'localhost'),
        port=int(config.get('db_port', 3306)),
        database_name=config.get('db_name', 'collectibles'),
        user=config.get('db_user', 'collectibles_user'),
        password=config.get('db_password', 'collectibles_pass'),
        pool_size=int(config.get('db_pool_size', 10))
    )
    db.create_tables_if_not_exist()
    logger.info("Database initialized successfully")


def create_adapter(storage: Optional[str] = None, local_path: Optional[str] = None):
    """
    Build the persistence adapter for the store.

    Args:
        storage: 'database' or 'local' (default: COLLECTIBLES_STORAGE env var, then 'database')
        local_path: JSON file for the local adapter (default: COLLECTIBLES_LOCAL_PATH env var)
    """
    storage = storage or os.getenv("COLLECTIBLES_STORAGE", "database")

    if storage == "local":
        path = local_path or os.getenv("COLLECTIBLES_LOCAL_PATH")
        logger.info(f"Using local storage adapter ({path or 'in-memory'})")
        return LocalAdapter(path)

    if storage == "database":
        initialize_database()
        return DatabaseAdapter()

    raise ValueError(f"Unknown storage backend: {storage}")


# ==================== VALIDATION ====================

def _require_text(data: dict, field: str, label: str, min_length: int = 1) -> str:
    value = empty_to_none(data.get(field))
    if value is None:
        raise ValidationError(f"{label} is required")
    value = str(value).strip()
    if len(value) < min_length:
        raise ValidationError(f"{label} must be at least {min_length} characters")
    return value


def _validate_price(value) -> Decimal:
    try:
        price = to_decimal(value)
    except ValueError as e:
        raise ValidationError(str(e))
    if not price.is_finite() or price < 0:
        raise ValidationError("Price must be a non-negative amount")
    return price


def _validate_date(value, label: str) -> Optional[date]:
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError(f"{label} must be a valid date (YYYY-MM-DD)")


def validate_category(data: dict, existing: Optional[list] = None,
                      category_id: Optional[str] = None) -> dict:
    """
    Validate category form input.

    - Name required, unique among existing categories (case-insensitive),
      ignoring the category being edited
    - Description optional (stored as empty string)
    """
    name = _require_text(data, 'name', 'Category name')

    for category in existing or []:
        if category['id'] != category_id and category['name'].lower() == name.lower():
            raise ValidationError(f"Category '{name}' already exists")

    return {
        'name': name,
        'description': (data.get('description') or '').strip()
    }


def validate_media_file(data: dict) -> dict:
    """
    Validate one media attachment.

    Type may be given directly or derived from a 'mime_type' field.
    """
    media_type = data.get('type') or media_type_from_mime(data.get('mime_type'))
    if media_type not in MEDIA_TYPES:
        raise ValidationError(f"Media type must be one of: {', '.join(MEDIA_TYPES)}")

    media = {
        'name': _require_text(data, 'name', 'Media file name'),
        'type': media_type,
        'url': _require_text(data, 'url', 'Media file URL'),
        'thumbnail_url': empty_to_none(data.get('thumbnail_url')),
    }
    if data.get('id'):
        media['id'] = data['id']
    return media


def validate_collection_item(data: dict, partial: bool = False,
                             today: Optional[date] = None) -> dict:
    """
    Validate collection item form input.

    With partial=True only the fields present in data are validated and
    returned (for updates).
    """
    today = today or date.today()
    result = {}

    if not partial or 'name' in data:
        result['name'] = _require_text(data, 'name', 'Name', min_length=2)

    if not partial or 'description' in data:
        result['description'] = (data.get('description') or '').strip()

    if not partial or 'condition' in data:
        condition = data.get('condition')
        if condition not in CONDITIONS:
            raise ValidationError("Please select a condition")
        result['condition'] = condition

    if not partial or 'price' in data:
        result['price'] = _validate_price(data.get('price'))

    if not partial or 'acquisition_date' in data:
        acquired = _validate_date(data.get('acquisition_date'), 'Acquisition date')
        if acquired is None:
            raise ValidationError("Acquisition date is required")
        if acquired > today:
            raise ValidationError("Acquisition date cannot be in the future")
        result['acquisition_date'] = acquired

    if not partial or 'category_id' in data:
        result['category_id'] = _require_text(data, 'category_id', 'Category')

    if not partial or 'notes' in data:
        result['notes'] = empty_to_none(data.get('notes'))

    if 'media_files' in data:
        result['media_files'] = [validate_media_file(m) for m in data.get('media_files') or []]
    elif not partial:
        result['media_files'] = []

    return result


def validate_wishlist_item(data: dict, partial: bool = False) -> dict:
    """Validate wishlist item form input (see validate_collection_item)."""
    result = {}

    if not partial or 'name' in data:
        result['name'] = _require_text(data, 'name', 'Name', min_length=2)

    if not partial or 'description' in data:
        result['description'] = (data.get('description') or '').strip()

    if not partial or 'price' in data:
        result['price'] = _validate_price(data.get('price'))

    if not partial or 'category_id' in data:
        result['category_id'] = _require_text(data, 'category_id', 'Category')

    return result


def validate_report(data: dict, today: Optional[date] = None) -> dict:
    """
    Validate a report descriptor.

    Time reports take a 'time_range' preset ('week', 'month', 'quarter',
    'year') or 'custom' with explicit start_date/end_date.
    Category reports need a category_id.
    """
    name = _require_text(data, 'name', 'Report name')
    report_type = data.get('type')
    if report_type not in REPORT_TYPES:
        raise ValidationError("Report type must be 'time' or 'category'")

    descriptor = {
        'name': name,
        'type': report_type,
        'start_date': None,
        'end_date': None,
        'category_id': None
    }

    if report_type == 'category':
        descriptor['category_id'] = _require_text(data, 'category_id', 'Category')
        return descriptor

    time_range = data.get('time_range') or 'custom'
    if time_range not in TIME_RANGES:
        raise ValidationError(f"Time range must be one of: {', '.join(TIME_RANGES)}")

    if time_range == 'custom':
        start_date = _validate_date(data.get('start_date'), 'Start date')
        end_date = _validate_date(data.get('end_date'), 'End date')
        if start_date is None or end_date is None:
            raise ValidationError("Start date and end date are required for a custom range")
    else:
        start_date, end_date = get_time_range_dates(time_range, today)

    if start_date > end_date:
        raise ValidationError("Start date must be on or before end date")

    descriptor['start_date'] = start_date
    descriptor['end_date'] = end_date
    return descriptor


# ==================== REPORTS ====================

def _subtract_months(day: date, months: int) -> date:
    """Same day-of-month N months earlier, clamped to the month's last day."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def get_time_range_dates(time_range: str, today: Optional[date] = None) -> tuple:
    """
    Resolve a time range preset to (start_date, end_date).

    The range always ends today:
    - week: 7 days back
    - month: 1 month back
    - quarter: 3 months back
    - year: 1 year back
    """
    today = today or date.today()

    if time_range == 'week':
        return (today - timedelta(days=7), today)
    if time_range == 'month':
        return (_subtract_months(today, 1), today)
    if time_range == 'quarter':
        return (_subtract_months(today, 3), today)
    if time_range == 'year':
        return (_subtract_months(today, 12), today)

    raise ValueError(f"No preset dates for time range: {time_range}")


def generate_report(collection_items: list, descriptor: dict) -> dict:
    """
    Materialize a report over collection items.

    - time: items whose acquisition_date is within [start_date, end_date]
      (both bounds inclusive)
    - category: items whose category_id equals the descriptor's

    Returns:
        {'items': [...], 'total_value': Decimal}
    """
    report_type = descriptor.get('type')

    if report_type == 'time':
        start_date = parse_date(descriptor.get('start_date'))
        end_date = parse_date(descriptor.get('end_date'))
        if start_date is None or end_date is None:
            raise ValidationError("Time report needs start_date and end_date")
        items = [
            item for item in collection_items
            if start_date <= parse_date(item['acquisition_date']) <= end_date
        ]
    elif report_type == 'category':
        category_id = descriptor.get('category_id')
        items = [item for item in collection_items if item['category_id'] == category_id]
    else:
        raise ValidationError(f"Unknown report type: {report_type}")

    total_value = sum((to_decimal(item['price']) for item in items), Decimal('0'))
    logger.debug(f"Generated {report_type} report: {len(items)} items, total {total_value}")

    return {
        'items': items,
        'total_value': total_value
    }


# ==================== DASHBOARD ====================

def get_collection_summary(collection_items: list) -> dict:
    """
    Totals shown on the dashboard.

    Returns:
        {'total_items': int, 'total_value': Decimal, 'average_price': Decimal}
    """
    total_items = len(collection_items)
    total_value = sum((to_decimal(item['price']) for item in collection_items), Decimal('0'))
    average_price = (total_value / total_items).quantize(Decimal('0.01')) if total_items else Decimal('0')

    return {
        'total_items': total_items,
        'total_value': total_value,
        'average_price': average_price
    }


def _matches(search: str, *values) -> bool:
    return any(value and search in value.lower() for value in values)


def filter_collection_items(collection_items: list, search: str = '',
                            category_id: Optional[str] = None,
                            sort: str = 'date') -> list:
    """
    Search, filter and sort collection items for display.

    - search: case-insensitive substring of name, description or notes
    - category_id: exact match (None or 'all' for every category)
    - sort: 'name' (A-Z), 'price' (highest first) or 'date' (newest acquisition first)
    """
    if sort not in SORT_ORDERS:
        raise ValidationError(f"Sort must be one of: {', '.join(SORT_ORDERS)}")

    search = (search or '').strip().lower()
    items = [
        item for item in collection_items
        if (not search or _matches(search, item['name'], item['description'], item.get('notes')))
        and (category_id in (None, '', 'all') or item['category_id'] == category_id)
    ]

    if sort == 'name':
        items.sort(key=lambda item: item['name'].lower())
    elif sort == 'price':
        items.sort(key=lambda item: to_decimal(item['price']), reverse=True)
    else:
        items.sort(key=lambda item: parse_date(item['acquisition_date']), reverse=True)

    return items


def search_wishlist_items(wishlist_items: list, search: str = '') -> list:
    """Case-insensitive search over wishlist name, description and category name."""
    search = (search or '').strip().lower()
    if not search:
        return list(wishlist_items)
    return [
        item for item in wishlist_items
        if _matches(search, item['name'], item['description'], item.get('category_name'))
    ]
