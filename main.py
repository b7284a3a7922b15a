"""Story Weaver — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Story Weaver dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--no-reload", action="store_true",
                        help="Run without auto-reload")
    args = parser.parse_args()

    # Build env for the server so it picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    cmd = [sys.executable, "-m", "uvicorn", "backend.app:app", "--host", HOST, "--port", BACKEND_PORT]
    if not args.no_reload:
        cmd.append("--reload")

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    try:
        sys.exit(subprocess.call(cmd, cwd=ROOT, env=env))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
