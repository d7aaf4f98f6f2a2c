#!/usr/bin/env python3
"""
Launcher for the AstroLuna API: optionally applies migrations, then serves
`astroluna.asgi:application` with uvicorn.

Usage examples:
  python main.py --port 8000
  python main.py --migrate --workers 2
  python main.py --args "--log-level debug --proxy-headers"

Options resolve as CLI args > environment (.env or system env) > defaults:
  - port:    --port, DJANGO_PORT, 8000
  - host:    --host, DJANGO_HOST, 0.0.0.0
  - reload:  --reload / --no-reload, DJANGO_DEBUG
  - workers: --workers, UVICORN_WORKERS
"""
from __future__ import annotations
import os
import sys
import shlex
import subprocess
from pathlib import Path
import argparse

from dotenv import load_dotenv

APP_MODULE = "astroluna.asgi:application"
SETTINGS_MODULE = "astroluna.settings"


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return str(v).lower() in ("1", "true", "yes", "on")


def build_command(host: str, port: int, reload: bool, workers: int | None, extra_args: list[str]) -> list[str]:
    cmd = [sys.executable, "-m", "uvicorn", APP_MODULE, "--host", host, "--port", str(port), "--lifespan", "on"]
    if reload:
        cmd.append("--reload")
    elif workers:
        # uvicorn ignores --workers together with --reload
        cmd.extend(["--workers", str(workers)])
    cmd.extend(extra_args)
    return cmd


def migrate_command() -> list[str]:
    return [sys.executable, "-m", "django", "migrate", "--noinput", f"--settings={SETTINGS_MODULE}"]


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Run the AstroLuna ASGI app via uvicorn")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (overrides DJANGO_PORT)")
    parser.add_argument("--host", default=os.getenv("DJANGO_HOST", "0.0.0.0"), help="Host to bind")
    parser.add_argument("--no-reload", dest="no_reload", action="store_true", help="Disable reload even if DJANGO_DEBUG is set")
    parser.add_argument("--reload", dest="reload", action="store_true", help="Force reload (overrides DJANGO_DEBUG)")
    parser.add_argument("--workers", type=int, default=None, help="Number of uvicorn worker processes")
    parser.add_argument("--migrate", action="store_true", help="Apply database migrations before starting")
    parser.add_argument("--args", type=str, default="", help="Extra uvicorn CLI args (quoted string)")
    args = parser.parse_args(argv)

    port = args.port or int(os.getenv("DJANGO_PORT", "8000"))
    workers = args.workers or (int(os.getenv("UVICORN_WORKERS")) if os.getenv("UVICORN_WORKERS") else None)

    if args.reload:
        reload_mode = True
    elif args.no_reload:
        reload_mode = False
    else:
        reload_mode = _truthy(os.getenv("DJANGO_DEBUG"))

    try:
        extra_args = shlex.split(args.args) if args.args else []
    except ValueError as e:
        print(f"Invalid --args: {e}", file=sys.stderr)
        return 2

    # Run with cwd=src so `astroluna` and the app packages import without installation
    src_dir = Path(__file__).resolve().parent / "src"
    env = os.environ.copy()
    env.setdefault("DJANGO_SETTINGS_MODULE", SETTINGS_MODULE)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(src_dir), env.get("PYTHONPATH", "")) if p)

    try:
        if args.migrate:
            print("Applying migrations...")
            result = subprocess.run(migrate_command(), env=env, cwd=str(src_dir))
            if result.returncode != 0:
                return result.returncode

        cmd = build_command(args.host, port, reload_mode, workers, extra_args)
        print("Starting server with:")
        print(" ", " ".join(shlex.quote(p) for p in cmd))
        proc = subprocess.Popen(cmd, env=env, cwd=str(src_dir))
        proc.wait()
        return proc.returncode or 0
    except KeyboardInterrupt:
        return 0
    except FileNotFoundError:
        print("uvicorn not found. Ensure dependencies are installed (pip install -e .).", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
