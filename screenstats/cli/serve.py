# =============================================
# File: screenstats/cli/serve.py
# Purpose: CLI entrypoint to run the service with uvicorn.
# Usage:
#   python -m screenstats.cli.serve --host 0.0.0.0 --port 8000
# =============================================
from __future__ import annotations
import argparse
import os

import uvicorn

def main(argv=None):
    ap = argparse.ArgumentParser(description="Run the screenstats API.")
    ap.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"), help="Bind address (default: 127.0.0.1)")
    ap.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")), help="Bind port (default: 8000)")
    ap.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info").lower(), help="uvicorn log level")
    args = ap.parse_args(argv)

    # Single worker: the aggregator is per process.
    uvicorn.run(
        "screenstats.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        workers=1,
        access_log=False,
    )

if __name__ == "__main__":
    main()
