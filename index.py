"""
Uvicorn Startup Script
----------------------
Runs the identity API with the host, port and reload settings from .env.
"""

import uvicorn

from app.core.config_manager import settings


if __name__ == "__main__":
    uvicorn.run(
        "app.app:app",
        host=settings.fastapi_host,
        port=settings.fastapi_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
