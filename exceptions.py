"""
Error types raised by the Collectibles store and validation layer.

Validation-style errors also subclass ValueError so the HTTP layer can keep
mapping ValueError to a 400 response, the same way it does for plain
business-rule violations.
"""


class StoreError(Exception):
    """Base class for all collection store errors."""


class NotAuthenticated(StoreError):
    """Operation attempted with no open owner session."""


class PersistenceError(StoreError):
    """A persistence adapter call failed. Local state was not changed."""


class LoadError(PersistenceError):
    """Bulk session load failed."""


class CategoryInUse(StoreError, ValueError):
    """Category delete blocked because items still reference it."""

    def __init__(self, category_id: str, item_count: int, wishlist_count: int):
        self.category_id = category_id
        self.item_count = item_count
        self.wishlist_count = wishlist_count
        super().__init__(
            f"Cannot delete category {category_id} - it is used by "
            f"{item_count} collection items and {wishlist_count} wishlist items"
        )


class ValidationError(StoreError, ValueError):
    """Invalid input, or a reference to a category that does not exist."""


class EntityNotFound(StoreError, LookupError):
    """Target id is not present in the store."""
