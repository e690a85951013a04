"""
Database models for Collectibles application.

All models use PeeWee ORM and follow these principles:
- IDs generated by the persistence adapter via utils.generate_uid()
- Every row is scoped to one owner (owner_id)
- Money stored as DECIMAL(12, 2)
- Empty strings converted to NULL via utils.empty_to_none()
- NO LOGIC IN MODELS - pure data structures only
- Referential rules (category in use, name cascade) enforced by collection_store.py
"""

from peewee import (
    Model,
    DatabaseProxy,
    CharField,
    DecimalField,
    DateField,
    DateTimeField,
    TextField,
    IntegerField,
    ForeignKeyField,
)


# Database connection proxy
# Bound in database_manager.initialize_connection() to MySQL (pooled) or SQLite
database = DatabaseProxy()


class BaseModel(Model):
    """
    Base model with common fields.

    All models inherit from this to get:
    - id field (uid - set by the persistence adapter)
    - created_at timestamp (set by the persistence adapter)
    - Shared database connection
    """
    id = CharField(primary_key=True, max_length=10)
    created_at = DateTimeField()

    class Meta:
        database = database


class Category(BaseModel):
    """
    Collection categories (e.g. "Books", "Coins").

    Business rules (enforced in collection_store.py):
    - Cannot delete if referenced by collection items or wishlist items
    - Renaming updates category_name on all referencing items
    - Name must be unique per owner
    """
    owner_id = CharField(max_length=64, index=True)
    name = CharField(max_length=255)
    description = TextField(default='')

    class Meta:
        table_name = 'collectibles_categories'
        indexes = (
            (('owner_id', 'name'), True),
        )


class CollectionItem(BaseModel):
    """
    Items owned by the collector.

    category_name is a denormalized copy of the category's name at last write.
    Condition is one of: mint, near-mint, excellent, very-good, good, fair, poor.
    """
    owner_id = CharField(max_length=64, index=True)
    name = CharField(max_length=255)
    description = TextField(default='')
    condition = CharField(max_length=20)
    price = DecimalField(max_digits=12, decimal_places=2)
    acquisition_date = DateField()
    category_id = ForeignKeyField(Category, column_name='category_id')
    category_name = CharField(max_length=255, null=True)
    notes = TextField(null=True)

    class Meta:
        table_name = 'collectibles_collection_items'


class MediaFile(BaseModel):
    """
    Media attached to a collection item.

    Owned by exactly one item. Deleted by collection_store.py when the item's
    media set no longer references it or the item itself is deleted.
    """
    item_id = ForeignKeyField(CollectionItem, column_name='item_id')
    name = CharField(max_length=255)
    type = CharField(max_length=10)  # 'image', 'video', 'audio' or 'document'
    url = TextField()
    thumbnail_url = TextField(null=True)
    position = IntegerField(default=0)  # Index in the item's media list

    class Meta:
        table_name = 'collectibles_media_files'


class WishlistItem(BaseModel):
    """Items the collector wants to acquire."""
    owner_id = CharField(max_length=64, index=True)
    name = CharField(max_length=255)
    description = TextField(default='')
    price = DecimalField(max_digits=12, decimal_places=2)
    category_id = ForeignKeyField(Category, column_name='category_id')
    category_name = CharField(max_length=255, null=True)

    class Meta:
        table_name = 'collectibles_wishlist_items'


class Report(BaseModel):
    """
    Saved report descriptors.

    Type 'time' uses start_date/end_date, type 'category' uses category_id.
    category_id is a plain column (not a foreign key) so a report survives
    the deletion of its category.
    """
    owner_id = CharField(max_length=64, index=True)
    name = CharField(max_length=255)
    type = CharField(max_length=10)  # 'time' or 'category'
    start_date = DateField(null=True)
    end_date = DateField(null=True)
    category_id = CharField(max_length=10, null=True)

    class Meta:
        table_name = 'collectibles_reports'


# List of all models for easy reference (creation order respects foreign keys)
ALL_MODELS = [
    Category,
    CollectionItem,
    MediaFile,
    WishlistItem,
    Report,
]
