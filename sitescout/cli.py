"""SiteScout CLI: simulate inspections, re-run hand-offs, serve the API, manage the DB."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from ulid import ULID


def _analyzer(args):
    from sitescout.config import get_settings
    from sitescout.handoff.graph import HandoffAnalyzer

    config = get_settings().handoff
    if args.offline:
        return HandoffAnalyzer(judge=None, config=config)
    return HandoffAnalyzer(config=config)


async def cmd_simulate(args):
    """Run a session over a directory of frames or a camera and print the analysis."""
    from sitescout.config import get_settings
    from sitescout.services.frame_source import CameraFrameSource, DirectoryFrameSource
    from sitescout.services.runner import InspectionRunner

    settings = get_settings()
    if args.camera is not None:
        device = int(args.camera) if args.camera.isdigit() else args.camera
        source = CameraFrameSource(device, settings.capture)
    else:
        source = DirectoryFrameSource(args.frames, settings.capture)
        if not len(source):
            print(f"No images found in {args.frames}")
            sys.exit(1)

    runner = InspectionRunner(
        str(ULID()), args.site, args.address,
        engine_kind=args.engine, frame_source=source,
        analyzer=_analyzer(args), settings=settings,
    )
    await runner.start()
    try:
        if isinstance(source, CameraFrameSource):
            await asyncio.sleep(args.duration)
        else:
            while not source.exhausted:
                await asyncio.sleep(0.2)
        await runner.drain()
        if args.linger:
            await asyncio.sleep(args.linger)
    finally:
        analysis = await runner.finish()

    if args.save_snapshot and runner.snapshot is not None:
        Path(args.save_snapshot).write_text(runner.snapshot.model_dump_json(indent=2))
        print(f"Snapshot written to {args.save_snapshot}", file=sys.stderr)

    summary = runner.snapshot.summary if runner.snapshot else None
    if summary is not None:
        print(
            f"{summary.total_hazards} hazard(s): {summary.critical_count} critical, "
            f"{summary.high_count} high, {summary.medium_count} medium, {summary.low_count} low",
            file=sys.stderr,
        )
    print(analysis.model_dump_json(indent=2))


async def cmd_analyze(args):
    """Run the hand-off on a stored snapshot."""
    from sitescout.schemas import SessionSnapshot

    path = Path(args.snapshot)
    if not path.exists():
        print(f"Snapshot not found: {path}")
        sys.exit(1)
    snapshot = SessionSnapshot.model_validate_json(path.read_text())
    analysis = await _analyzer(args).analyze(snapshot)
    print(analysis.model_dump_json(indent=2))


async def cmd_init_db(args):
    from sitescout.db.engine import create_tables, engine

    await create_tables()
    await engine.dispose()
    print("Database tables created")


def cmd_serve(args):
    import uvicorn

    uvicorn.run("sitescout.main:app", host=args.host, port=args.port)


def main():
    parser = argparse.ArgumentParser(description="SiteScout CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # simulate
    sim = subparsers.add_parser("simulate", help="Run an inspection over a directory of images or a camera")
    src = sim.add_mutually_exclusive_group(required=True)
    src.add_argument("--frames", help="Directory of JPEG/PNG frames")
    src.add_argument("--camera", help="OpenCV device index or stream URL")
    sim.add_argument("--duration", type=float, default=60.0,
                     help="Seconds to sample the camera (with --camera)")
    sim.add_argument("--site", required=True, help="Site name")
    sim.add_argument("--address", default=None, help="Site address")
    sim.add_argument("--engine", choices=("streaming", "polling"), default=None,
                     help="Engine (defaults to config default_engine)")
    sim.add_argument("--linger", type=float, default=0.0,
                     help="Seconds to keep the session open after the last frame")
    sim.add_argument("--save-snapshot", default="", help="Write the session snapshot JSON here")
    sim.add_argument("--offline", action="store_true", help="Skip the remote hand-off (fallback only)")

    # analyze
    an = subparsers.add_parser("analyze", help="Run the hand-off on a stored snapshot")
    an.add_argument("snapshot", help="Snapshot JSON file")
    an.add_argument("--offline", action="store_true", help="Skip the remote hand-off (fallback only)")

    # init-db
    subparsers.add_parser("init-db", help="Create database tables")

    # serve
    srv = subparsers.add_parser("serve", help="Run the HTTP/WebSocket API")
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "simulate":
        asyncio.run(cmd_simulate(args))
    elif args.command == "analyze":
        asyncio.run(cmd_analyze(args))
    elif args.command == "init-db":
        asyncio.run(cmd_init_db(args))
    elif args.command == "serve":
        cmd_serve(args)


if __name__ == "__main__":
    main()
