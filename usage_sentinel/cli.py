from __future__ import annotations

import argparse
import copy
import os

import anyio
import uvicorn
import uvicorn.config

from usage_sentinel.core.config.settings import Settings, get_settings


def _build_log_config(settings: Settings) -> dict:
    # Uvicorn's default LOGGING_CONFIG leaves the `usage_sentinel.*` namespace without handlers.
    config = copy.deepcopy(uvicorn.config.LOGGING_CONFIG)
    loggers = config.setdefault("loggers", {})
    loggers["usage_sentinel"] = {
        "handlers": ["default"],
        "level": settings.log_level,
        "propagate": False,
    }
    return config


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Poll usage sources and alert on usage changes.")
    parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "2466")))

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        "refresh-once",
        help="Run one refresh cycle, evaluate notification rules and print the results.",
    )
    subparsers.add_parser(
        "status",
        help="Print stored history and forecast summaries for every source.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = get_settings()

    if args.command is None:
        uvicorn.run(
            "usage_sentinel.main:app",
            host=args.host,
            port=args.port,
            log_config=_build_log_config(settings),
            access_log=False,
        )
        return

    if args.command == "refresh-once":
        from usage_sentinel.core.clients.http import close_http_client, init_http_client
        from usage_sentinel.core.usage import format_average
        from usage_sentinel.db.session import SessionLocal, close_db, init_db
        from usage_sentinel.runtime import build_runtime, prepare_runtime

        async def _run() -> None:
            try:
                await init_db()
                await init_http_client()
                runtime = build_runtime(settings, session_factory=SessionLocal)
                await prepare_runtime(runtime, settings)
                summary = await runtime.orchestrator.refresh()
                if summary is None:
                    print("status=busy")
                    return
                for name, display in summary.display.items():
                    error = summary.errors.get(name)
                    print(f"{name}={display}" + (f" error={error}" if error else ""))
                for fired in summary.notifications:
                    print(f"notified source={fired.source} rule={fired.rule_id} title={fired.event.title!r}")
                print(f"average={format_average(summary.average_percent) or 'n/a'}")
            finally:
                try:
                    await close_http_client()
                finally:
                    await close_db()

        anyio.run(_run)
        return

    if args.command == "status":
        from usage_sentinel.core.utils.time import format_utc, utcnow
        from usage_sentinel.db.session import SessionLocal, close_db, init_db
        from usage_sentinel.runtime import build_runtime, prepare_runtime

        async def _run() -> None:
            try:
                await init_db()
                runtime = build_runtime(settings, session_factory=SessionLocal)
                await prepare_runtime(runtime, settings)
                now = utcnow()
                for source in runtime.sources:
                    enabled = runtime.settings_store.is_enabled(source.name)
                    history = runtime.history_store.history(source.name)
                    latest = history[-1] if history else None
                    if latest is None:
                        print(f"{source.name} enabled={str(enabled).lower()} snapshots=0")
                        continue
                    forecast = source.forecast(latest.usage, history, now=now)
                    print(
                        f"{source.name} enabled={str(enabled).lower()} snapshots={len(history)} "
                        f"latest={latest.usage.formatted} at={format_utc(latest.timestamp)}"
                    )
                    if forecast is not None and forecast.summary:
                        print(f"  {forecast.summary}")
            finally:
                await close_db()

        anyio.run(_run)
        return

    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    main()
