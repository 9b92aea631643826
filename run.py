"""
Uvicorn runner for the PR Relay webhook service.

Usage:
    python run.py

Environment variables (set in .env file):
    DEBUG=true - Debug logging and auto-reload
    PORT=8000 - Server port (default: 8000)
    HOST=127.0.0.1 - Server host (default: 127.0.0.1)
    SUBSCRIPTIONS_PATH=subscriptions.yaml - Webhook subscriptions
"""

import os

import uvicorn
from app.config import get_settings

if __name__ == "__main__":
    settings = get_settings()

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    log_level = "debug" if settings.debug else "info"

    print(f"Starting {settings.app_name} ({settings.environment})")
    print(f"Listening on http://{host}:{port} (log level {log_level})")
    print(f"Subscriptions: {settings.subscriptions_path}")
    print(f"Webhook endpoint: http://{host}:{port}/api/webhooks/azure-devops/{{config_id}}")
    print(f"Teams authorization: http://{host}:{port}/api/auth/teams")

    uvicorn.run(
        "app.main:app",
        host=host,
        port=port,
        reload=settings.debug,
        log_level=log_level,
        access_log=True,
    )
