#!/usr/bin/env python3

import uvicorn

from defirates.config import get_settings
from defirates.main import app

if __name__ == "__main__":
    settings = get_settings()
    print("Starting DeFi Rates server...")
    print(f"Server will be available at: http://localhost:{settings.PORT}")
    print(f"Live updates stream at: http://localhost:{settings.PORT}/events")
    print("Press Ctrl+C to stop the server")

    try:
        uvicorn.run(
            app,
            host=settings.HOST,
            port=settings.PORT,
            reload=False,
            log_level=settings.LOG_LEVEL.lower(),
            # SSE connections stay open; let shutdown close them instead of waiting
            timeout_graceful_shutdown=5,
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
