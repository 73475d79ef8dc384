"""
Local launcher for the approval engine API.

    python run.py                 # serve on 127.0.0.1:8000
    python run.py --reload        # restart on code changes
    python run.py --port 9000
"""
import argparse
import uvicorn

from approval_engine.config.settings import settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="run.py", description=settings.app_name)
    parser.add_argument("--host", default="127.0.0.1", help="bind address")
    parser.add_argument("--port", type=int, default=8000, help="bind port")
    parser.add_argument("--reload", action="store_true", help="auto-reload on source changes")
    parser.add_argument("--workers", type=int, default=1, help="worker processes (forced to 1 with --reload)")
    return parser


def main():
    args = build_parser().parse_args()
    workers = 1 if args.reload else max(1, args.workers)

    print(f"{settings.app_name} v{settings.app_version} -> http://{args.host}:{args.port}{settings.api_prefix}")
    if workers > 1:
        print(f"workers={workers}")

    uvicorn.run(
        "approval_engine.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=workers,
    )


if __name__ == "__main__":
    main()
