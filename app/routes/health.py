"""
Health routes — liveness check and circuit breaker state for each enrichment tier.
"""
import logging
from flask import Blueprint, jsonify

from app.services.circuit_breaker import get_all_breakers

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def api_health():
    """Circuit breaker state per outbound service."""
    services = {name: breaker.get_health() for name, breaker in get_all_breakers().items()}
    degraded = any(svc['state'] != 'closed' for svc in services.values())
    return jsonify({'status': 'degraded' if degraded else 'ok', 'services': services})


@bp.route('/api/health/<service>/reset', methods=['POST'])
def reset_circuit(service):
    """Force a breaker back to CLOSED."""
    breaker = get_all_breakers().get(service)
    if breaker is None:
        return jsonify({'error': f'Unknown service: {service}'}), 404
    breaker.reset()
    logger.info("Circuit breaker '%s' reset manually", service)
    return jsonify({'ok': True, 'service': service, 'state': breaker.state})
