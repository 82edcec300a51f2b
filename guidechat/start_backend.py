#!/usr/bin/env python3
"""
Backend startup wrapper.

    python -m guidechat.start_backend
"""
import os
import sys

import uvicorn


def main() -> None:
    port = int(os.getenv("PORT", "8000"))
    print("[Backend] Starting GuideChat backend")
    print(f"[Backend] Server: http://localhost:{port}")
    try:
        uvicorn.run(
            "guidechat.main:app",
            host=os.getenv("HOST", "0.0.0.0"),
            port=port,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[Backend] Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
