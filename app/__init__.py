"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from app.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Register blueprints
    from app.routes.health import bp as health_bp
    from app.routes.profiles import bp as profiles_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(profiles_bp)

    # Initialize circuit breakers for the outbound enrichment tiers
    from app.extensions import redis_client
    from app.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic — no create_all() call.
    from app.database import load_models
    load_models()

    return app
