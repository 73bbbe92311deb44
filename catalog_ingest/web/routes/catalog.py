"""
Catalog routes for Catalog Ingest Service.

Read-only views over the books the ingestion runs have written.
"""

from flask import Blueprint, jsonify, request

from catalog_ingest.db.catalog import CatalogRepository
from catalog_ingest.sync.models import BookRecord, CatalogQuery

catalog_bp = Blueprint('catalog', __name__, url_prefix='/api/catalog')

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _book_to_dict(book: BookRecord) -> dict:
    return {
        'isbn13': book.isbn13,
        'title': book.title,
        'subtitle': book.subtitle,
        'description': book.description,
        'cover_url': book.cover_url,
        'published_date': book.published_date,
        'publisher': book.publisher,
        'language': book.language,
        'page_count': book.page_count,
        'updated_at': book.updated_at.isoformat() if book.updated_at else None,
    }


@catalog_bp.route('/search')
def search():
    """Search the catalog by title, publisher and language."""
    page = request.args.get('page', 1, type=int)
    if page < 1:
        page = 1

    page_size = request.args.get('page_size', DEFAULT_PAGE_SIZE, type=int)
    if page_size <= 0 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE

    query = CatalogQuery(
        q=request.args.get('q', ''),
        publisher=request.args.get('publisher', ''),
        language=request.args.get('language', ''),
        limit=page_size,
        offset=(page - 1) * page_size,
    )

    books, total = CatalogRepository().search(query)

    return jsonify({
        'data': [_book_to_dict(b) for b in books],
        'meta': {
            'page': page,
            'page_size': page_size,
            'total': total,
            'total_pages': (total + page_size - 1) // page_size,
        },
    })


@catalog_bp.route('/books/<isbn>')
def get_by_isbn(isbn: str):
    """Get a catalog book by ISBN-13."""
    book = CatalogRepository().get_by_isbn(isbn)
    if book is None:
        return jsonify({'error': f'book not found: {isbn}'}), 404

    return jsonify(_book_to_dict(book))
