#!/usr/bin/env python3
"""Start the batch engine API under uvicorn, honouring the PORT environment variable."""

import os
import subprocess
import sys


def _port() -> int:
    raw = os.environ.get("PORT", "8000")
    try:
        return int(raw)
    except ValueError:
        print(f"Warning: Invalid PORT value '{raw}', using default 8000", file=sys.stderr)
        return 8000


def _with_src_on_path() -> None:
    src_path = os.path.abspath("src")
    if not os.path.isdir(src_path):
        print(f"Warning: src directory not found at {src_path}", file=sys.stderr)
        return
    existing = os.environ.get("PYTHONPATH", "")
    os.environ["PYTHONPATH"] = f"{src_path}:{existing}" if existing else src_path
    sys.path.insert(0, src_path)


def main() -> int:
    _with_src_on_path()
    port = _port()

    try:
        import batch_engine.main  # noqa: F401
    except Exception as exc:
        print(f"❌ Failed to import batch_engine.main: {exc}", file=sys.stderr)
        return 1

    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "batch_engine.main:app",
        "--host",
        "0.0.0.0",
        "--port",
        str(port),
        "--proxy-headers",
        "--forwarded-allow-ips",
        "*",
    ]
    print(f"🚀 Starting batch engine on port {port}...", file=sys.stderr)
    try:
        return subprocess.call(cmd)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
