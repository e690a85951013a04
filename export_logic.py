"""
Export logic for Collectibles application.

Writes a list of collection items to an Excel workbook with openpyxl.
One row per item, columns:
Name, Category, Description, Condition, Price/Value, Acquisition Date, Notes
"""

import logging
from io import BytesIO
from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from utils import parse_date, to_decimal

logger = logging.getLogger(__name__)

HEADERS = ['Name', 'Category', 'Description', 'Condition', 'Price/Value', 'Acquisition Date', 'Notes']
MAX_COLUMN_WIDTH = 50
COLUMN_PADDING = 2
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ==================== HELPER FUNCTIONS ====================

def format_condition(condition: str) -> str:
    """
    Format a condition code for display.

    Examples:
        "near-mint" → "Near Mint"
        "good" → "Good"
    """
    return ' '.join(word[:1].upper() + word[1:] for word in (condition or '').split('-'))


def format_locale_date(value) -> str:
    """Acquisition date in the current locale's date representation."""
    day = parse_date(value)
    return day.strftime('%x') if day else ''


def build_export_rows(items: list, categories: list) -> list:
    """
    Build one row (list of cell values) per item, in HEADERS order.

    Category is resolved from the categories list by id; items whose
    category no longer exists get "Unknown".
    """
    category_names = {category['id']: category['name'] for category in categories}
    rows = []
    for item in items:
        rows.append([
            item['name'],
            category_names.get(item['category_id']) or 'Unknown',
            item.get('description') or '',
            format_condition(item.get('condition')),
            float(to_decimal(item['price'])),
            format_locale_date(item.get('acquisition_date')),
            item.get('notes') or '',
        ])
    return rows


def calculate_column_widths(rows: list) -> list:
    """
    Column widths: longest header or value plus padding, capped at MAX_COLUMN_WIDTH.

    Empty rows list gives an empty widths list (columns keep default width).
    """
    if not rows:
        return []

    widths = [len(header) for header in HEADERS]
    for row in rows:
        for col_idx, value in enumerate(row):
            text = '' if value is None else str(value)
            widths[col_idx] = max(widths[col_idx], len(text))

    return [min(MAX_COLUMN_WIDTH, width + COLUMN_PADDING) for width in widths]


# ==================== EXPORT ====================

def export_collection_to_excel(items: list, categories: list,
                               sheet_name: str = 'Collection Items') -> bytes:
    """
    Write items to an .xlsx workbook.

    Args:
        items: Collection item dicts (e.g. a generated report's items)
        categories: Category dicts used to resolve category names
        sheet_name: Worksheet title

    Returns:
        Workbook content as bytes
    """
    rows = build_export_rows(items, categories)

    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_name

    worksheet.append(HEADERS)
    for row in rows:
        worksheet.append(row)

    for col_idx, width in enumerate(calculate_column_widths(rows), start=1):
        worksheet.column_dimensions[get_column_letter(col_idx)].width = width

    buffer = BytesIO()
    workbook.save(buffer)
    logger.info(f"Exported {len(rows)} items to sheet '{sheet_name}'")
    return buffer.getvalue()


def export_filename(report_name: str) -> str:
    """File name for a report download, e.g. "Books 2024" → "books-2024.xlsx"."""
    slug = '-'.join(''.join(c if c.isalnum() else ' ' for c in report_name.lower()).split())
    return f"{slug or 'collection-report'}.xlsx"
