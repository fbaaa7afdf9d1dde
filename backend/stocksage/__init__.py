# backend/stocksage/__init__.py
from flask import Flask, request

from .config import Config, check_production_secrets, providers_configured
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    check_production_secrets(app.config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Process-wide services, built once and shared through app.extensions
    from .services.access_policy import AccessPolicy, enforce_access_policy
    from .services.guest_pool import AccessTokenCache, GuestAccountPool, IdentityProviderClient
    from .services.guest_session import GuestSessionStore
    from .services.identity_service import IdentityResolver

    guest_store = GuestSessionStore.from_config(app.config)
    token_cache = AccessTokenCache()
    provider_client = IdentityProviderClient.from_config(app.config, token_cache)

    app.extensions["stocksage.guest_sessions"] = guest_store
    app.extensions["stocksage.identity_resolver"] = IdentityResolver.from_config(app.config, guest_store)
    app.extensions["stocksage.access_policy"] = AccessPolicy.from_config(app.config)
    app.extensions["stocksage.token_cache"] = token_cache
    app.extensions["stocksage.guest_pool"] = (
        GuestAccountPool(provider_client, max_size=app.config["GUEST_POOL_MAX_SIZE"])
        if provider_client is not None
        else None
    )

    if not providers_configured(app.config):
        app.logger.warning("Auth provider credentials missing; using simplified access policy")

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.inventory import inventory_bp
    from .routes.invoices import invoices_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(invoices_bp)

    app.before_request(enforce_access_policy)
    app.after_request(guest_store.apply)

    @app.after_request
    def add_auth_cache_headers(response):
        if request.path.startswith("/api/auth"):
            response.headers["Cache-Control"] = "no-store, max-age=0"
        return response

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
