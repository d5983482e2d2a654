"""
Main entrypoint.

Usage:
    python -m runtracker                    # serve the tracking API
    python -m runtracker serve --port 8000
    python -m runtracker replay run.jsonl   # replay a recorded sensor log

The API is also served directly by uvicorn:
    uvicorn --factory runtracker.api.main:create_app --host 0.0.0.0 --port 8000
"""
import argparse
import logging
import sys

logger = logging.getLogger(__name__)


def _run_serve(argv) -> None:
    import uvicorn

    from runtracker.config import get_settings

    parser = argparse.ArgumentParser(prog="runtracker serve", description="Serve the tracking API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.info("Serving tracking API on %s:%d", args.host, args.port)
    uvicorn.run(
        "runtracker.api.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
    )


def _run_replay(argv) -> None:
    from runtracker.scripts.replay import main as replay_main
    replay_main(argv)


if __name__ == "__main__":
    # Dispatch on first argument: `python -m runtracker replay ...` or serve
    args = sys.argv[1:]
    if args and args[0] == "replay":
        _run_replay(args[1:])
    elif args and args[0] == "serve":
        _run_serve(args[1:])
    else:
        _run_serve(args)
