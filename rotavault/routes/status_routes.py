"""
Status routes - read-only overview and run history endpoints.
"""

from flask import Blueprint, jsonify, request, current_app

from rotavault.models import TierRun
from rotavault.backup.tiers import TIER_ORDER
from rotavault.status import collect_status


bp = Blueprint('status', __name__, url_prefix='/api/status')


@bp.route('/overview', methods=['GET'])
def get_overview():
    """
    Get backup status overview.

    Returns:
        JSON with per-tier artifact counts, staging counts, last runs and
        runner/cron state
    """
    return jsonify(collect_status(current_app.config))


@bp.route('/runs', methods=['GET'])
def list_runs():
    """
    Get tier run history with filtering and pagination.

    Query params:
        - tier: Filter by tier (daily/weekly/monthly)
        - status: Filter by status (running/success/partial_failure/failed)
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with run records and metadata
    """
    tier_filter = request.args.get('tier')
    status_filter = request.args.get('status')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    # Enforce limits
    if limit > 200:
        limit = 200
    if limit < 1:
        limit = 1
    if offset < 0:
        offset = 0

    query = TierRun.query

    if tier_filter:
        if tier_filter not in TIER_ORDER:
            return jsonify({'error': 'Invalid tier filter'}), 400
        query = query.filter(TierRun.tier == tier_filter)

    if status_filter:
        if status_filter not in ['running', 'success', 'partial_failure', 'failed']:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(TierRun.status == status_filter)

    total = query.count()
    runs = query.order_by(TierRun.started_at.desc()).offset(offset).limit(limit).all()

    return jsonify({
        'runs': [run.to_dict() for run in runs],
        'total': total,
        'limit': limit,
        'offset': offset
    })


@bp.route('/runs/<int:run_id>', methods=['GET'])
def get_run(run_id):
    """
    Get one tier run including its logs.

    Returns:
        JSON run record, 404 if not found
    """
    run = TierRun.query.get(run_id)
    if not run:
        return jsonify({'error': 'Run not found'}), 404

    data = run.to_dict()
    data['logs'] = run.logs
    return jsonify(data)


@bp.route('/scheduler-diagnostics', methods=['GET'])
def get_scheduler_diagnostics_endpoint():
    """
    Get detailed scheduler diagnostics.

    Returns:
        JSON with scheduler state, jobs and runner process information
    """
    from rotavault.scheduler import get_scheduler_diagnostics
    diagnostics = get_scheduler_diagnostics(current_app.config['SCHEDULER_PID_FILE'])
    return jsonify(diagnostics)
