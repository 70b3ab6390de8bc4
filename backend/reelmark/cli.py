"""
Reelmark command line — serve the API, or drive an analysis against a running server.

    reelmark serve --port 8000
    reelmark analyze "https://youtu.be/dQw4w9WgXcQ" --theme "pricing"
    reelmark link BV1xx411c7mD --token ...
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

from reelmark.core.config import get_settings
from reelmark.orchestrator.client import HttpAnalysisApiClient
from reelmark.orchestrator.orchestrator import AnalysisOrchestrator
from reelmark.orchestrator.session import PENDING_VIDEO_KEY, SessionStore
from reelmark.orchestrator.state import AnalysisViewState
from reelmark.schemas.schemas import TopicGenerationMode

logger = logging.getLogger(__name__)


def _parse_args(argv=None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="reelmark", description="Reelmark video highlights.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes.")

    for name, help_text in (("analyze", "Analyze a video URL."), ("link", "Add a video to your library.")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--base-url", default=settings.api_base_url, help="Server root URL.")
        cmd.add_argument("--token", default=None, help="Session token; omit to run anonymously.")
        cmd.add_argument("--user", default=None, help="Account id the token belongs to.")
        cmd.add_argument("-v", "--verbose", action="store_true")

    analyze = sub.choices["analyze"]
    analyze.add_argument("url")
    analyze.add_argument(
        "--mode",
        default=TopicGenerationMode.SMART.value,
        choices=[m.value for m in TopicGenerationMode],
    )
    analyze.add_argument("--theme", default=None, help="Also generate highlights for this theme.")

    sub.choices["link"].add_argument("video_id")
    return parser.parse_args(argv)


def _view_report(view: AnalysisViewState) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "videoId": view.video_id,
        "platform": view.platform,
        "fromCache": view.from_cache,
        "title": (view.video_info or {}).get("title"),
        "topics": [
            {"title": t.title, "duration": t.duration, "segments": [[s.start, s.end] for s in t.segments]}
            for t in view.topics
        ],
        "themes": view.themes,
        "summary": view.summary,
        "suggestedQuestions": view.suggested_questions,
    }
    for key, value in (
        ("error", view.error),
        ("summaryError", view.summary_error),
        ("themeError", view.theme_error),
        ("saveWarning", view.save_warning),
        ("limitMessage", view.limit_message),
    ):
        if value:
            report[key] = value
    return report


def _log_state(event: str, orch: AnalysisOrchestrator) -> None:
    if event == "state":
        logger.info(f"State: {orch.state.value}")


async def _analyze(args: argparse.Namespace) -> int:
    async with HttpAnalysisApiClient(args.base_url, token=args.token) as api:
        orch = AnalysisOrchestrator(api, user=args.user if args.token else None)
        orch.subscribe(_log_state)

        view = await orch.process_video(args.url, TopicGenerationMode(args.mode))
        if args.theme and not view.error:
            await orch.select_theme(args.theme)
        await orch.wait_for_background()

    print(json.dumps(_view_report(orch.view), indent=2, ensure_ascii=False, default=str))
    if view.auth_redirect:
        print("Sign in to continue analyzing videos.", file=sys.stderr)
    return 1 if view.error or view.auth_redirect else 0


async def _link(args: argparse.Namespace) -> int:
    if not args.token:
        print("--token is required to link a video.", file=sys.stderr)
        return 2
    session = SessionStore()
    session.set(PENDING_VIDEO_KEY, args.video_id)
    async with HttpAnalysisApiClient(args.base_url, token=args.token) as api:
        orch = AnalysisOrchestrator(api, user=args.user or "cli", session=session)
        linked = await orch.link_pending_video()
    print("Linked." if linked else "Video could not be linked.")
    return 0 if linked else 1


def main(argv: Optional[list] = None) -> int:
    args = _parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("reelmark.main:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.command == "analyze":
        return asyncio.run(_analyze(args))
    return asyncio.run(_link(args))


if __name__ == "__main__":
    raise SystemExit(main())
