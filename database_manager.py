"""
Database manager for Collectibles application.

Connection handling plus plain CRUD over the collectibles tables (PeeWee).
Nothing here validates input or touches the in-memory store. Ids,
timestamps and denormalized names are prepared by the caller
(persistence.DatabaseAdapter on behalf of collection_store.py).

Every query is scoped to an owner_id.
"""

import logging
import time
from peewee import SqliteDatabase, OperationalError, JOIN
from playhouse.pool import PooledMySQLDatabase
from database_model import (
    database,
    ALL_MODELS,
    Category,
    CollectionItem,
    MediaFile,
    WishlistItem,
    Report
)

logger = logging.getLogger(__name__)

# Connection retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1  # seconds

# Query performance tracking
ENABLE_QUERY_METRICS = True  # Set to False in production for performance
SLOW_QUERY_THRESHOLD = 1.0  # Log queries taking longer than 1 second


# ==================== INITIALIZATION ====================

def initialize_connection(engine: str = "mysql",
                          host: str = "localhost", port: int = 3306,
                          database_name: str = "collectibles",
                          user: str = "collectibles_user",
                          password: str = "collectibles_pass",
                          pool_size: int = 10,
                          pool_recycle: int = 3600) -> None:
    """
    Initialize database connection.

    MySQL uses a connection pool so request handlers reuse connections
    instead of opening a new one per call. SQLite ("sqlite" engine) treats
    database_name as the file path (":memory:" for tests).

    Args:
        engine: "mysql" or "sqlite"
        host: Database host (mysql only)
        port: Database port (mysql only)
        database_name: Database name, or file path for sqlite
        user: Database user (mysql only)
        password: Database password (mysql only)
        pool_size: Maximum number of connections in pool (default: 10)
        pool_recycle: Recycle connections after this many seconds (default: 3600)
    """
    try:
        if engine == "sqlite":
            db_instance = SqliteDatabase(database_name, pragmas={'foreign_keys': 1})
        elif engine == "mysql":
            db_instance = PooledMySQLDatabase(
                database_name,
                host=host,
                port=port,
                user=user,
                password=password,
                charset='utf8mb4',
                max_connections=pool_size,
                stale_timeout=pool_recycle,
                timeout=10  # Connection timeout
            )
        else:
            raise ValueError(f"Unsupported database engine: {engine}")

        database.initialize(db_instance)

        if database.is_closed():
            database.connect()

        if engine == "sqlite":
            logger.info(f"Database connection initialized: sqlite:{database_name}")
        else:
            logger.info(f"Database connection pool initialized: {host}:{port}/{database_name} "
                        f"(pool_size={pool_size}, recycle={pool_recycle}s)")
    except Exception as e:
        logger.error(f"Failed to initialize database connection: {e}")
        raise


def check_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns True if connection is alive, False otherwise.
    """
    try:
        database.execute_sql('SELECT 1')
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def reconnect() -> bool:
    """
    Attempt to reconnect to database.

    Returns True if reconnection successful, False otherwise.
    """
    try:
        if not database.is_closed():
            database.close()
        database.connect()
        logger.info("Database reconnection successful")
        return True
    except Exception as e:
        logger.error(f"Database reconnection failed: {e}")
        return False


def execute_with_retry(operation, *args, **kwargs):
    """
    Execute database operation with retry logic for transient failures.

    Args:
        operation: Function to execute
        *args, **kwargs: Arguments to pass to operation

    Returns:
        Result of operation

    Raises:
        Exception: If all retries exhausted
    """
    last_exception = None

    for attempt in range(MAX_RETRIES):
        try:
            if attempt > 0 and not check_connection():
                logger.info("Connection unhealthy, attempting reconnect...")
                reconnect()

            return operation(*args, **kwargs)

        except OperationalError as e:
            last_exception = e
            logger.warning(f"Database operation failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}")

            if attempt < MAX_RETRIES - 1:
                time.sleep(RETRY_DELAY)
                reconnect()
            else:
                logger.error(f"Database operation failed after {MAX_RETRIES} attempts")
                raise last_exception

        except Exception as e:
            # Non-retryable error, raise immediately
            logger.error(f"Non-retryable database error: {e}")
            raise

    raise last_exception


def create_tables_if_not_exist() -> None:
    """
    Create all tables if they don't exist.

    PeeWee's safe=True checks if tables exist, but MySQL may still complain
    about indexes from a previous run; those errors are skipped.
    """
    try:
        database.create_tables(ALL_MODELS, safe=True)
        logger.info("Database tables created/verified")
    except OperationalError as e:
        if "Duplicate key name" in str(e) or "Duplicate entry" in str(e):
            logger.info("Database tables already exist with indexes - skipping creation")
        else:
            logger.error(f"Failed to create tables: {e}")
            raise
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


def close_connection() -> None:
    """Close database connection."""
    if not database.is_closed():
        database.close()
        logger.info("Database connection closed")


def _execute_transaction(func, *args, **kwargs):
    """
    Inner function to execute database operation in transaction.

    This is separated out so it can be wrapped by execute_with_retry.
    """
    with database.atomic():
        return func(*args, **kwargs)


def with_transaction(func):
    """
    Decorator to wrap database write operations in transactions with retry logic.

    Either all changes succeed or all are rolled back. Nested calls become
    savepoints inside the caller's transaction.
    """
    def wrapper(*args, **kwargs):
        try:
            return execute_with_retry(_execute_transaction, func, *args, **kwargs)
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__} after all retries: {e}")
            raise
    wrapper.__name__ = func.__name__
    return wrapper


def with_retry(func):
    """
    Decorator to wrap database read operations with retry logic.

    Automatically retries on transient connection failures (OperationalError).
    """
    def wrapper(*args, **kwargs):
        try:
            return execute_with_retry(func, *args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to {func.__name__} after all retries: {e}")
            raise
    wrapper.__name__ = func.__name__
    return wrapper


def log_query_time(func):
    """
    Decorator to log query execution time for performance monitoring.

    Logs warning for queries exceeding SLOW_QUERY_THRESHOLD.
    """
    def wrapper(*args, **kwargs):
        if not ENABLE_QUERY_METRICS:
            return func(*args, **kwargs)

        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            elapsed = time.time() - start_time

            if elapsed > SLOW_QUERY_THRESHOLD:
                logger.warning(f"Slow query in {func.__name__}: {elapsed:.3f}s")
            else:
                logger.debug(f"Query {func.__name__}: {elapsed:.3f}s")

            return result
        except Exception as e:
            elapsed = time.time() - start_time
            logger.error(f"Query failed in {func.__name__} after {elapsed:.3f}s: {e}")
            raise
    wrapper.__name__ = func.__name__
    return wrapper


# ==================== CATEGORY CRUD ====================

@with_transaction
def create_category(data: dict) -> Category:
    """Create category with provided data dict."""
    category = Category(**data)
    category.save(force_insert=True)
    logger.info(f"Created category: {category.name} ({category.id})")
    return category


@with_retry
@log_query_time
def get_categories_by_owner(owner_id: str) -> list:
    """Get all categories for owner as row dicts."""
    return list(Category
                .select()
                .where(Category.owner_id == owner_id)
                .order_by(Category.name)
                .dicts())


@with_transaction
def update_category(owner_id: str, category_id: str, data: dict) -> Category:
    """Update category fields."""
    category = Category.get((Category.id == category_id) & (Category.owner_id == owner_id))
    for key, value in data.items():
        setattr(category, key, value)
    category.save()
    logger.info(f"Updated category: {category.name} ({category.id})")
    return category


@with_transaction
def delete_category(owner_id: str, category_id: str) -> int:
    """Delete category by ID. Returns number of rows removed (0 if absent)."""
    count = Category.delete().where(
        (Category.id == category_id) & (Category.owner_id == owner_id)
    ).execute()
    logger.info(f"Deleted category: {category_id} ({count} rows)")
    return count


# ==================== COLLECTION ITEM CRUD ====================

@with_transaction
def create_collection_item(data: dict) -> CollectionItem:
    """Create collection item with provided data dict."""
    item = CollectionItem(**data)
    item.save(force_insert=True)
    logger.info(f"Created collection item: {item.name} ({item.id})")
    return item


@with_retry
@log_query_time
def get_collection_items_by_owner(owner_id: str) -> list:
    """
    Get all collection items for owner as row dicts.

    Each row carries the joined category name as 'joined_category_name'
    (None if the category row is missing).
    """
    return list(CollectionItem
                .select(CollectionItem, Category.name.alias('joined_category_name'))
                .join(Category, JOIN.LEFT_OUTER, on=(CollectionItem.category_id == Category.id))
                .where(CollectionItem.owner_id == owner_id)
                .dicts())


@with_transaction
def update_collection_item(owner_id: str, item_id: str, data: dict) -> CollectionItem:
    """Update collection item fields."""
    item = CollectionItem.get((CollectionItem.id == item_id) & (CollectionItem.owner_id == owner_id))
    for key, value in data.items():
        setattr(item, key, value)
    item.save()
    logger.info(f"Updated collection item: {item.name} ({item.id})")
    return item


@with_transaction
def delete_collection_item(owner_id: str, item_id: str) -> int:
    """
    Delete collection item and its media files.

    Returns number of item rows removed (0 if already absent).
    """
    item_ids = (CollectionItem
                .select(CollectionItem.id)
                .where((CollectionItem.id == item_id) & (CollectionItem.owner_id == owner_id)))
    MediaFile.delete().where(MediaFile.item_id.in_(item_ids)).execute()
    count = CollectionItem.delete().where(
        (CollectionItem.id == item_id) & (CollectionItem.owner_id == owner_id)
    ).execute()
    logger.info(f"Deleted collection item: {item_id} ({count} rows)")
    return count


# ==================== MEDIA FILE CRUD ====================

@with_transaction
def create_media_file(data: dict) -> MediaFile:
    """Create media file with provided data dict."""
    media = MediaFile(**data)
    media.save(force_insert=True)
    logger.info(f"Created media file: {media.name} ({media.id}) for item {data.get('item_id')}")
    return media


@with_retry
def get_media_files_by_item(item_id: str) -> list:
    """Get media files for an item as row dicts, in list order."""
    return list(MediaFile
                .select()
                .where(MediaFile.item_id == item_id)
                .order_by(MediaFile.position, MediaFile.created_at, MediaFile.id)
                .dicts())


@with_transaction
def update_media_file(media_id: str, data: dict) -> int:
    """Update media file fields. Returns number of rows changed."""
    count = MediaFile.update(**data).where(MediaFile.id == media_id).execute()
    logger.info(f"Updated media file: {media_id} ({count} rows)")
    return count


@with_transaction
def delete_media_file(media_id: str) -> int:
    """Delete media file by ID."""
    count = MediaFile.delete().where(MediaFile.id == media_id).execute()
    logger.info(f"Deleted media file: {media_id} ({count} rows)")
    return count


# ==================== WISHLIST ITEM CRUD ====================

@with_transaction
def create_wishlist_item(data: dict) -> WishlistItem:
    """Create wishlist item with provided data dict."""
    item = WishlistItem(**data)
    item.save(force_insert=True)
    logger.info(f"Created wishlist item: {item.name} ({item.id})")
    return item


@with_retry
@log_query_time
def get_wishlist_items_by_owner(owner_id: str) -> list:
    """Get all wishlist items for owner as row dicts (with 'joined_category_name')."""
    return list(WishlistItem
                .select(WishlistItem, Category.name.alias('joined_category_name'))
                .join(Category, JOIN.LEFT_OUTER, on=(WishlistItem.category_id == Category.id))
                .where(WishlistItem.owner_id == owner_id)
                .dicts())


@with_transaction
def update_wishlist_item(owner_id: str, item_id: str, data: dict) -> WishlistItem:
    """Update wishlist item fields."""
    item = WishlistItem.get((WishlistItem.id == item_id) & (WishlistItem.owner_id == owner_id))
    for key, value in data.items():
        setattr(item, key, value)
    item.save()
    logger.info(f"Updated wishlist item: {item.name} ({item.id})")
    return item


@with_transaction
def delete_wishlist_item(owner_id: str, item_id: str) -> int:
    """Delete wishlist item by ID."""
    count = WishlistItem.delete().where(
        (WishlistItem.id == item_id) & (WishlistItem.owner_id == owner_id)
    ).execute()
    logger.info(f"Deleted wishlist item: {item_id} ({count} rows)")
    return count


# ==================== CATEGORY NAME CASCADE ====================

@with_transaction
def update_category_name_references(owner_id: str, category_id: str, name: str) -> dict:
    """
    Write a category's new name into every item that references it.

    Returns counts: {'collection_items': n, 'wishlist_items': m}
    """
    item_count = (CollectionItem
                  .update(category_name=name)
                  .where((CollectionItem.owner_id == owner_id) &
                         (CollectionItem.category_id == category_id))
                  .execute())
    wishlist_count = (WishlistItem
                      .update(category_name=name)
                      .where((WishlistItem.owner_id == owner_id) &
                             (WishlistItem.category_id == category_id))
                      .execute())
    logger.info(f"Renamed category references for {category_id}: "
                f"{item_count} items, {wishlist_count} wishlist items")
    return {'collection_items': item_count, 'wishlist_items': wishlist_count}


# ==================== REPORT CRUD ====================

@with_transaction
def create_report(data: dict) -> Report:
    """Create report descriptor with provided data dict."""
    report = Report(**data)
    report.save(force_insert=True)
    logger.info(f"Created report: {report.name} ({report.id})")
    return report


@with_retry
def get_reports_by_owner(owner_id: str) -> list:
    """Get all report descriptors for owner as row dicts."""
    return list(Report
                .select()
                .where(Report.owner_id == owner_id)
                .order_by(Report.created_at)
                .dicts())


@with_transaction
def update_report(owner_id: str, report_id: str, data: dict) -> Report:
    """Update report descriptor fields."""
    report = Report.get((Report.id == report_id) & (Report.owner_id == owner_id))
    for key, value in data.items():
        setattr(report, key, value)
    report.save()
    logger.info(f"Updated report: {report.name} ({report.id})")
    return report


@with_transaction
def delete_report(owner_id: str, report_id: str) -> int:
    """Delete report descriptor by ID."""
    count = Report.delete().where(
        (Report.id == report_id) & (Report.owner_id == owner_id)
    ).execute()
    logger.info(f"Deleted report: {report_id} ({count} rows)")
    return count
