"""
Main application file for Collectibles.
All routes consolidated here - no separate router files.
"""

import logging
import os
from io import BytesIO
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

import business_logic
import database_manager as db
import export_logic
from collection_store import CollectionStore
from exceptions import EntityNotFound, NotAuthenticated
from persistence import DatabaseAdapter
from session import AuthSession

# Load environment variables
load_dotenv()

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize app
app = FastAPI(title="Collectibles")


@app.on_event("startup")
def startup_event():
    """Build the store for the configured storage backend and follow the session."""
    logger.info("Starting Collectibles application...")
    adapter = business_logic.create_adapter()
    app.state.store = CollectionStore(adapter)
    app.state.session = AuthSession()
    app.state.store.bind_session(app.state.session)
    logger.info(f"Collectibles application started (storage={adapter.name})")


@app.on_event("shutdown")
def shutdown_event():
    """Close the store and database connection."""
    store = getattr(app.state, "store", None)
    if store is not None:
        store.close()
        if isinstance(store.adapter, DatabaseAdapter):
            db.close_connection()
    logger.info("Collectibles application stopped")


def _store(request: Request) -> CollectionStore:
    return request.app.state.store


def _error_response(e: Exception, action: str) -> JSONResponse:
    """Map store and validation errors to a JSON error response."""
    if isinstance(e, NotAuthenticated):
        status_code, message = 401, str(e)
    elif isinstance(e, EntityNotFound):
        status_code, message = 404, str(e)
    elif isinstance(e, ValueError):
        status_code, message = 400, str(e)
    elif isinstance(e, KeyError):
        status_code, message = 400, f"Missing required field: {e}"
    else:
        logger.error(f"Error {action}: {e}")
        status_code, message = 500, str(e)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message}
    )


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": message}
    )


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for Docker and monitoring.

    For the database backend this runs a simple query; returns 503 if the
    database is unreachable.
    """
    store = _store(request)
    if isinstance(store.adapter, DatabaseAdapter) and not db.check_connection():
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "reason": "Database connection lost"
            }
        )
    return {
        "status": "healthy",
        "storage": store.adapter.name
    }


# ==================== SESSION API ROUTES ====================

@app.post("/api/session")
async def sign_in(request: Request):
    """
    Sign in an owner and load their collection.

    Request body:
    {
        "owner_id": "user-1"
    }
    """
    try:
        data = await request.json()
        request.app.state.session.sign_in(data["owner_id"])
        store = _store(request)
        return {"success": True, "data": {
            "owner_id": store.owner_id,
            "categories": len(store.categories),
            "collection_items": len(store.collection_items),
            "wishlist_items": len(store.wishlist_items),
            "reports": len(store.reports)
        }}
    except Exception as e:
        return _error_response(e, "signing in")


@app.delete("/api/session")
async def sign_out(request: Request):
    """Sign out and clear the in-memory collection."""
    request.app.state.session.sign_out()
    return {"success": True}


# ==================== CATEGORY API ROUTES ====================

@app.get("/api/categories")
async def get_categories(request: Request):
    """Get all categories, sorted by name."""
    store = _store(request)
    if not store.is_loaded:
        return _error_response(NotAuthenticated("No active session - sign in first"), "getting categories")
    categories = sorted(store.categories, key=lambda c: c['name'].lower())
    return {"success": True, "data": categories}


@app.post("/api/category")
async def create_category(request: Request):
    """
    Create new category.

    Request body:
    {
        "name": "Vinyl",
        "description": "Records"
    }
    """
    try:
        data = await request.json()
        store = _store(request)
        category = business_logic.validate_category(data, store.categories)
        result = store.add_category(category['name'], category['description'])
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "creating category")


@app.put("/api/category/{category_id}")
async def update_category(category_id: str, request: Request):
    """Update category. A rename is applied to every item in the category."""
    try:
        data = await request.json()
        store = _store(request)
        if not store.is_loaded:
            raise NotAuthenticated("No active session - sign in first")
        current = store.get_category_by_id(category_id)
        if current is None:
            return _not_found(f"Category {category_id} not found")
        category = business_logic.validate_category({**current, **data}, store.categories, category_id)
        result = store.update_category(category_id, category)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "updating category")


@app.delete("/api/category/{category_id}")
async def delete_category(category_id: str, request: Request):
    """Delete category (only if not in use)."""
    try:
        _store(request).delete_category(category_id)
        return {"success": True}
    except Exception as e:
        return _error_response(e, "deleting category")


# ==================== COLLECTION API ROUTES ====================

@app.get("/api/collection")
async def get_collection(request: Request, search: str = '',
                         category_id: Optional[str] = None, sort: str = 'date'):
    """
    Get collection items.

    Query params:
        search: matches name, description or notes
        category_id: only items in this category ('all' for every category)
        sort: 'name', 'price' or 'date'
    """
    try:
        store = _store(request)
        if not store.is_loaded:
            raise NotAuthenticated("No active session - sign in first")
        items = business_logic.filter_collection_items(
            store.collection_items,
            search=search,
            category_id=category_id,
            sort=sort
        )
        return {"success": True, "data": items}
    except Exception as e:
        return _error_response(e, "getting collection")


@app.post("/api/collection-item")
async def create_collection_item(request: Request):
    """
    Create collection item.

    Request body:
    {
        "name": "Dune",
        "description": "First edition",
        "condition": "good",
        "price": "12.50",
        "acquisition_date": "2024-01-01",
        "category_id": "abc123",
        "notes": "Optional notes",
        "media_files": [{"name": "cover.jpg", "mime_type": "image/jpeg", "url": "..."}]
    }
    """
    try:
        data = await request.json()
        item = business_logic.validate_collection_item(data)
        result = _store(request).add_collection_item(item)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "creating collection item")


@app.get("/api/collection-item/{item_id}")
async def get_collection_item(item_id: str, request: Request):
    """Get one collection item."""
    store = _store(request)
    if not store.is_loaded:
        return _error_response(NotAuthenticated("No active session - sign in first"), "getting collection item")
    item = store.get_collection_item_by_id(item_id)
    if item is None:
        return _not_found(f"Collection item {item_id} not found")
    return {"success": True, "data": item}


@app.put("/api/collection-item/{item_id}")
async def update_collection_item(item_id: str, request: Request):
    """Update collection item. Only the fields present in the body change."""
    try:
        data = await request.json()
        item = business_logic.validate_collection_item(data, partial=True)
        result = _store(request).update_collection_item(item_id, item)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "updating collection item")


@app.delete("/api/collection-item/{item_id}")
async def delete_collection_item(item_id: str, request: Request):
    """Delete collection item and its media."""
    try:
        _store(request).delete_collection_item(item_id)
        return {"success": True}
    except Exception as e:
        return _error_response(e, "deleting collection item")


# ==================== WISHLIST API ROUTES ====================

@app.get("/api/wishlist")
async def get_wishlist(request: Request, search: str = ''):
    """Get wishlist items, optionally filtered by search term."""
    store = _store(request)
    if not store.is_loaded:
        return _error_response(NotAuthenticated("No active session - sign in first"), "getting wishlist")
    items = business_logic.search_wishlist_items(store.wishlist_items, search)
    return {"success": True, "data": items}


@app.post("/api/wishlist-item")
async def create_wishlist_item(request: Request):
    """
    Create wishlist item.

    Request body:
    {
        "name": "Foundation",
        "description": "Hardcover",
        "price": "30.00",
        "category_id": "abc123"
    }
    """
    try:
        data = await request.json()
        item = business_logic.validate_wishlist_item(data)
        result = _store(request).add_wishlist_item(item)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "creating wishlist item")


@app.put("/api/wishlist-item/{item_id}")
async def update_wishlist_item(item_id: str, request: Request):
    """Update wishlist item. Only the fields present in the body change."""
    try:
        data = await request.json()
        item = business_logic.validate_wishlist_item(data, partial=True)
        result = _store(request).update_wishlist_item(item_id, item)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "updating wishlist item")


@app.delete("/api/wishlist-item/{item_id}")
async def delete_wishlist_item(item_id: str, request: Request):
    """Delete wishlist item."""
    try:
        _store(request).delete_wishlist_item(item_id)
        return {"success": True}
    except Exception as e:
        return _error_response(e, "deleting wishlist item")


# ==================== REPORT API ROUTES ====================

@app.get("/api/reports")
async def get_reports(request: Request):
    """Get saved report descriptors."""
    store = _store(request)
    if not store.is_loaded:
        return _error_response(NotAuthenticated("No active session - sign in first"), "getting reports")
    return {"success": True, "data": store.reports}


@app.post("/api/report")
async def create_report(request: Request):
    """
    Save a report descriptor.

    Request body (time report):
    {
        "name": "Last quarter",
        "type": "time",
        "time_range": "quarter"   # or "custom" with start_date/end_date
    }

    Request body (category report):
    {
        "name": "Books",
        "type": "category",
        "category_id": "abc123"
    }
    """
    try:
        data = await request.json()
        descriptor = business_logic.validate_report(data)
        result = _store(request).add_report(descriptor)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "creating report")


@app.post("/api/reports/generate")
async def generate_adhoc_report(request: Request):
    """Generate a report from a descriptor without saving it."""
    try:
        data = await request.json()
        descriptor = business_logic.validate_report({"name": "Report", **data})
        store = _store(request)
        if not store.is_loaded:
            raise NotAuthenticated("No active session - sign in first")
        result = business_logic.generate_report(store.collection_items, descriptor)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "generating report")


@app.delete("/api/report/{report_id}")
async def delete_report(report_id: str, request: Request):
    """Delete saved report descriptor."""
    try:
        _store(request).delete_report(report_id)
        return {"success": True}
    except Exception as e:
        return _error_response(e, "deleting report")


@app.get("/api/report/{report_id}/generate")
async def generate_report(report_id: str, request: Request):
    """Generate a saved report: matching items and their total value."""
    try:
        store = _store(request)
        if not store.is_loaded:
            raise NotAuthenticated("No active session - sign in first")
        report = store.get_report_by_id(report_id)
        if report is None:
            return _not_found(f"Report {report_id} not found")
        result = business_logic.generate_report(store.collection_items, report)
        return {"success": True, "data": {"report": report, **result}}
    except Exception as e:
        return _error_response(e, "generating report")


@app.get("/api/report/{report_id}/export")
async def export_report(report_id: str, request: Request):
    """Download a saved report's items as an Excel workbook."""
    try:
        store = _store(request)
        if not store.is_loaded:
            raise NotAuthenticated("No active session - sign in first")
        report = store.get_report_by_id(report_id)
        if report is None:
            return _not_found(f"Report {report_id} not found")
        result = business_logic.generate_report(store.collection_items, report)
        if not result['items']:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "No items match this report"}
            )
        content = export_logic.export_collection_to_excel(result['items'], store.categories)
        filename = export_logic.export_filename(report['name'])
        return StreamingResponse(
            BytesIO(content),
            media_type=export_logic.XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )
    except Exception as e:
        return _error_response(e, "exporting report")


# ==================== DASHBOARD API ROUTES ====================

@app.get("/api/dashboard/summary")
async def get_dashboard_summary(request: Request):
    """Total items, total value and average price of the collection."""
    store = _store(request)
    if not store.is_loaded:
        return _error_response(NotAuthenticated("No active session - sign in first"), "getting summary")
    summary = business_logic.get_collection_summary(store.collection_items)
    return {"success": True, "data": summary}
