"""
Flask application factory and server entry-point.
"""

import os

from flask import Flask

from clinicdesk.client import BackendClient
from clinicdesk.config import (
    BASE_URL,
    SECRET_KEY_ENV,
    SECRET_KEY_HINT,
    SESSION_IDLE_HOURS,
    get_env,
)
from clinicdesk.pages import PAGES
from clinicdesk.web.routes import register_routes


def default_client_factory(on_unauthorized):
    return BackendClient(BASE_URL, on_unauthorized=on_unauthorized)


def create_app(client_factory=None, testing: bool = False):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    if testing:
        app.config["SECRET_KEY"] = "testing-secret-key"
    else:
        app.config["SECRET_KEY"] = get_env(SECRET_KEY_ENV, hint=SECRET_KEY_HINT)
    app.config["TESTING"] = testing
    app.config["CLIENT_FACTORY"] = client_factory or default_client_factory

    if not testing:
        print(f"[init] Backend: {BASE_URL}")
        print(f"[init] Pages: {', '.join(sorted(PAGES))}")

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("ClinicDesk – Hospital Front Office")
    print("=" * 60)

    app = create_app()

    host = os.getenv("WEB_HOST", "0.0.0.0")
    port = int(os.getenv("WEB_PORT", "5000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Session idle expiry: {SESSION_IDLE_HOURS} hours")
    print("\nRoutes:")
    print(f"  - GET  http://{host}:{port}/login")
    for slug in sorted(PAGES):
        print(f"  - GET  http://{host}:{port}/{slug}")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
