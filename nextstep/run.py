#!/usr/bin/env python3
"""
NextStep API runner.

Serves nextstep.main:app with uvicorn on PORT (default 3001).
"""
import sys

import uvicorn

from nextstep.core.config import settings


def main() -> None:
    print("[NextStep] Starting API")
    print(f"[NextStep] Server: http://localhost:{settings.PORT}")
    try:
        uvicorn.run(
            "nextstep.main:app",
            host="0.0.0.0",
            port=settings.PORT,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[NextStep] Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
