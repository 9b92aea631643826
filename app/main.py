import logging
from fastapi import FastAPI
from app.config import get_settings
from app.api.routes import auth, teams, webhooks

settings = get_settings()

# Configure application logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Set log level for app modules
logger = logging.getLogger("app")
logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)

app = FastAPI(
    title=settings.app_name,
    description="Azure DevOps pull request notifications for Microsoft Teams",
    version="0.1.0",
)

# Include routers
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(auth.router, prefix="/api/auth", tags=["Teams Authorization"])
app.include_router(teams.router, prefix="/api/teams", tags=["Teams"])


@app.get("/")
async def root():
    return {
        "message": "Welcome to PR Relay - Azure DevOps pull requests in Microsoft Teams",
        "version": "0.1.0",
        "endpoints": {
            "webhooks": "/api/webhooks",
            "auth": "/api/auth/teams",
            "teams": "/api/teams",
            "health": "/health",
            "docs": "/docs",
            "redoc": "/redoc",
        },
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.app_name}
