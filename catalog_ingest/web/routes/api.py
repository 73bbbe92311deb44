"""
API routes for Catalog Ingest Service.
"""

import hmac

from flask import Blueprint, current_app, jsonify, request

from catalog_ingest.db.database import get_db_session
from catalog_ingest.db.ledger import RunLedger
from catalog_ingest.db.models import IngestLog
from catalog_ingest.jobs import schedule_ingest_run
from catalog_ingest.sync.models import Run
from catalog_ingest.utils.logging import get_logger

logger = get_logger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

SECRET_HEADER = 'X-Internal-Secret'


def check_internal_secret() -> bool:
    """A configured job secret must match the request header."""
    secret = current_app.config['INGEST_CONFIG'].internal_jobs_secret
    if not secret:
        return True
    provided = request.headers.get(SECRET_HEADER, '')
    return hmac.compare_digest(provided.encode(), secret.encode())


def _run_to_dict(run: Run) -> dict:
    return {
        'run_id': run.id,
        'status': run.status,
        'started_at': run.started_at.isoformat() if run.started_at else None,
        'finished_at': run.finished_at.isoformat() if run.finished_at else None,
        'config_books_max': run.config_books_max,
        'config_authors_max': run.config_authors_max,
        'config_subjects': run.config_subjects.split(',') if run.config_subjects else [],
        'books_fetched': run.books_fetched,
        'books_upserted': run.books_upserted,
        'authors_fetched': run.authors_fetched,
        'authors_upserted': run.authors_upserted,
        'error': run.error or None,
    }


@api_bp.route('/jobs/ingest', methods=['POST'])
def trigger_ingest():
    """Start an ingestion run in the background."""
    if not check_internal_secret():
        logger.warning("Rejected ingest trigger", remote_addr=request.remote_addr)
        return jsonify({'error': 'invalid internal secret'}), 401

    config = current_app.config['INGEST_CONFIG']
    job_id = schedule_ingest_run(timeout_minutes=config.run_timeout_minutes)

    return jsonify({'message': 'ingestion started', 'job_id': job_id}), 202


@api_bp.route('/status')
def status():
    """Get the latest run."""
    runs = RunLedger().list_runs(limit=1)
    latest = runs[0] if runs else None

    return jsonify({
        'last_run': latest.started_at.isoformat() if latest else None,
        'last_run_status': latest.status if latest else None,
        'books_upserted': latest.books_upserted if latest else 0,
        'authors_upserted': latest.authors_upserted if latest else 0,
    })


@api_bp.route('/runs')
def get_runs():
    """Get ingestion runs."""
    limit = request.args.get('limit', 20, type=int)
    limit = max(1, min(limit, 100))

    return jsonify([_run_to_dict(r) for r in RunLedger().list_runs(limit=limit)])


@api_bp.route('/runs/<run_id>')
def get_run(run_id: str):
    """Get a single run with the books and authors it wrote."""
    ledger = RunLedger()
    run = ledger.get_run(run_id)
    if run is None:
        return jsonify({'error': 'run not found'}), 404

    links = ledger.get_run_links(run_id)
    data = _run_to_dict(run)
    data['isbns'] = links.isbns
    data['author_keys'] = links.author_keys
    return jsonify(data)


@api_bp.route('/logs')
def get_logs():
    """Get recent logs."""
    limit = request.args.get('limit', 100, type=int)
    level = request.args.get('level')
    run_id = request.args.get('run_id')

    with get_db_session() as session:
        query = session.query(IngestLog)

        if level:
            query = query.filter(IngestLog.level == level.upper())
        if run_id:
            query = query.filter(IngestLog.ingest_run_id == run_id)

        logs = query.order_by(IngestLog.created_at.desc()).limit(limit).all()

        return jsonify([{
            'id': l.id,
            'level': l.level,
            'message': l.message,
            'details': l.details,
            'run_id': l.ingest_run_id,
            'created_at': l.created_at.isoformat() if l.created_at else None,
        } for l in logs])
