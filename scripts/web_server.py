#!/usr/bin/env python3
"""
Start the Worksheet Vault API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from worksheet_vault.core.config import DEBUG, validate_config


def main():
    parser = argparse.ArgumentParser(description="Run the Worksheet Vault API server")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=8000, help="Port to listen on (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    args = parser.parse_args()

    issues = validate_config()
    for issue in issues:
        print(f"Config warning: {issue}")

    print(f"Worksheet Vault API on http://{args.host}:{args.port}")
    uvicorn.run(
        "worksheet_vault.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if DEBUG else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
