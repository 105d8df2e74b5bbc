#!/usr/bin/env python3
"""
WLED Slide - Launcher
Checks dependencies and starts the API server from the backend directory.
"""

import os
import subprocess
import sys
from pathlib import Path

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8420"))

PROJECT_ROOT = Path(__file__).parent.resolve()
VERSION_FILE = PROJECT_ROOT / "VERSION"


def get_version():
    try:
        return VERSION_FILE.read_text().strip()
    except OSError:
        return "?.?.?"


def check_dependencies():
    """Check and install missing dependencies."""
    try:
        import fastapi
        import uvicorn
        import aiohttp
        return True
    except ImportError:
        pass

    print("Dependencies missing, installing...")
    for extra_args in [[], ["--break-system-packages"]]:
        try:
            subprocess.check_call(
                [sys.executable, "-m", "pip", "install", "-e", str(PROJECT_ROOT)] + extra_args,
                stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
            print("Dependencies installed!")
            return True
        except subprocess.CalledProcessError:
            pass

    print("ERROR: could not install dependencies!")
    print(f"   Run:  pip install -e {PROJECT_ROOT}")
    sys.exit(1)


def run_server():
    backend_dir = PROJECT_ROOT / "backend"

    if not backend_dir.is_dir():
        print(f"ERROR: backend directory not found: {backend_dir}")
        sys.exit(1)

    os.chdir(str(backend_dir))
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))

    print(f"  Server starting on http://localhost:{PORT}")
    print(f"  Press Ctrl+C to stop")
    print()

    import uvicorn
    try:
        uvicorn.run("main:app", host=HOST, port=PORT, reload=False, log_level="info")
    except (KeyboardInterrupt, SystemExit):
        pass


def main():
    print()
    print("    +------------------------------------------+")
    print(f"    |     WLED SLIDE v{get_version():<25s}|")
    print("    +------------------------------------------+")
    print()
    check_dependencies()
    run_server()


if __name__ == "__main__":
    main()
