"""
Profile routes — cache-first profile lookup, manual sync, cost estimate, enqueue.
"""
import asyncio
import logging
from flask import Blueprint, jsonify, request

from app.pipeline.base import OwnerScope, OWNER_TYPES, EXTERNAL, CREATOR, NOT_FOUND
from app.pipeline.cost_config import UnknownSourceKey, estimate
from app.pipeline.manager import get_pipeline

logger = logging.getLogger('routes.profiles')

bp = Blueprint('profiles', __name__)


def _scope_from_args(args):
    kind = args.get('owner_type', EXTERNAL)
    if kind not in OWNER_TYPES:
        raise ValueError(f"Unknown owner_type '{kind}'")
    if kind == EXTERNAL:
        return OwnerScope.external()
    owner_id = args.get('owner_id', type=int)
    if owner_id is None:
        raise ValueError(f"owner_id is required for owner_type '{kind}'")
    return OwnerScope(kind, owner_id)


# ── Profiles ─────────────────────────────────────────────────────────────────

@bp.route('/api/profiles/<username>')
def get_profile(username):
    """Resolve a profile, cache first. 404 when no tier has data."""
    try:
        scope = _scope_from_args(request.args)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    require_data = request.args.get('require_data', '').lower() in ('1', 'true', 'yes')
    pipeline = get_pipeline()
    outcome = asyncio.run(pipeline.resolver.resolve(username, scope=scope, require_data=require_data))

    if outcome.resolved:
        return jsonify(outcome.to_dict())
    if outcome.status == NOT_FOUND:
        return jsonify({'error': 'not found', 'username': outcome.username}), 404
    return jsonify({'error': outcome.error or 'resolution failed', 'username': outcome.username}), 502


@bp.route('/api/profiles/<username>/refresh', methods=['POST'])
def refresh_profile(username):
    """Drop the stored picture and resolve from the source tiers again."""
    try:
        scope = _scope_from_args(request.args)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    outcome = asyncio.run(get_pipeline().resolver.refresh(username, scope=scope))
    status = 200 if outcome.resolved else 404 if outcome.status == NOT_FOUND else 502
    return jsonify(outcome.to_dict()), status


# ── Sync + cost ──────────────────────────────────────────────────────────────

@bp.route('/api/sync/manual', methods=['POST'])
def manual_sync():
    """Run the profile sync now and return its stats."""
    try:
        stats = asyncio.run(get_pipeline().sync_job.run_manual())
        return jsonify(stats.to_dict())
    except Exception as e:
        logger.error("Manual sync failed: %s", e, exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/cost/estimate', methods=['POST'])
def cost_estimate():
    """Estimate the cost of a set of batches: {"batches": [{source_key, item_count, options}]}."""
    data = request.json or {}
    batches = data.get('batches')
    if not isinstance(batches, list):
        return jsonify({'error': 'batches must be a list'}), 400
    try:
        result = estimate(batches)
    except UnknownSourceKey as e:
        return jsonify({'error': f"Unknown source key: {e.args[0]}"}), 400
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({'error': f'Invalid batch: {e}'}), 400
    return jsonify(result.to_dict())


@bp.route('/api/enrichment/stats')
def enrichment_stats():
    """Cached profile counts by source and owner type; ?owner_type= narrows it."""
    owner_type = request.args.get('owner_type')
    if owner_type is not None and owner_type not in OWNER_TYPES:
        return jsonify({'error': f"Unknown owner_type '{owner_type}'"}), 400
    return jsonify(get_pipeline().cache.stats(owner_type=owner_type))


# ── Enrichment queue ─────────────────────────────────────────────────────────

@bp.route('/api/enrichment', methods=['POST'])
def enqueue_enrichment():
    """Hand a subject to the worker's enrichment queue."""
    from app.extensions import redis_client
    from app.pipeline.queue import submit_request

    data = request.json or {}
    subject_id = data.get('subject_id')
    username = data.get('username', '')
    kind = data.get('kind', CREATOR)
    if not isinstance(subject_id, int) or kind == EXTERNAL or kind not in OWNER_TYPES:
        return jsonify({'error': 'subject_id (int) and kind creator|company are required'}), 400

    try:
        accepted = submit_request(redis_client, subject_id, username, kind)
    except Exception as e:
        logger.error("Could not queue enrichment for %s:%s: %s", kind, subject_id, e)
        return jsonify({'error': 'queue unavailable'}), 503
    if not accepted:
        return jsonify({'error': 'username is empty'}), 400
    return jsonify({'queued': True, 'subject_id': subject_id, 'kind': kind}), 202
