"""
Query the memory index for relevant past context.

    memsync-recall recall "what did we decide about the release?"
    memsync-recall profile
"""

import argparse
import json
import sys
from typing import Any, Callable, Mapping, TextIO

from .client import HttpMemoryClient, MemoryClient
from .config import Settings, load_api_key
from .errors import ConfigError
from .retry import CallExecutor
from .scrub import scrub

SEARCH_LIMIT = 10
SEARCH_THRESHOLD = 0.4


def format_profile(profile: Mapping[str, Any]) -> list[str]:
    body = profile.get("profile") if isinstance(profile.get("profile"), dict) else {}
    lines = ["=== PROFILE ==="]
    static = body.get("static") or []
    dynamic = body.get("dynamic") or []
    if static:
        lines.append("Static:")
        lines.extend(f"  - {fact}" for fact in static)
    if dynamic:
        lines.append("Dynamic:")
        lines.extend(f"  - {fact}" for fact in dynamic)
    return lines


def format_search(search: Mapping[str, Any]) -> list[str]:
    results = search.get("results") or []
    lines = [f"=== SEARCH ({search.get('timing', '?')}ms, {search.get('total', len(results))} total) ==="]
    if not results:
        lines.append("Nothing found.")
        return lines
    for i, item in enumerate(results, start=1):
        text = item.get("memory") or item.get("chunk") or "(no content)"
        try:
            pct = f"{float(item.get('similarity') or 0) * 100:.0f}%"
        except (TypeError, ValueError):
            pct = "?%"
        lines.append(f"{i}. [{pct}] {text}")
        metadata = item.get("metadata") or {}
        if isinstance(metadata, dict) and metadata.get("session_date"):
            lines.append(f"   date: {metadata['session_date']}")
    return lines


class Recall:
    def __init__(self, settings: Settings, client: MemoryClient, executor: CallExecutor):
        self.settings = settings
        self.client = client
        self.executor = executor

    def profile(self, query: str | None = None) -> dict[str, Any]:
        return self.executor.execute(
            lambda timeout: self.client.profile(
                container_tag=self.settings.container_tag,
                timeout=timeout,
                query=query,
                threshold=SEARCH_THRESHOLD,
            ),
            "Profile fetch",
        )

    def search(self, query: str, limit: int = SEARCH_LIMIT) -> dict[str, Any]:
        return self.executor.execute(
            lambda timeout: self.client.search(
                query,
                container_tag=self.settings.container_tag,
                timeout=timeout,
                limit=limit,
                threshold=SEARCH_THRESHOLD,
            ),
            "Search memories",
        )

    def recall(self, query: str, limit: int = SEARCH_LIMIT) -> str:
        lines = format_profile(self.profile(query))
        lines.append("")
        lines.extend(format_search(self.search(query, limit)))
        return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memsync-recall", description="Recall indexed conversation memory.")
    sub = parser.add_subparsers(dest="command", required=True)
    p_recall = sub.add_parser("recall", help="Profile plus hybrid search for a query.")
    p_recall.add_argument("query", nargs="+", help="Natural-language query.")
    p_recall.add_argument("-n", "--limit", type=int, default=SEARCH_LIMIT, help="Maximum results (default: 10).")
    sub.add_parser("profile", help="Print the raw profile JSON.")
    return parser


def main(
    argv: list[str] | None = None,
    environ: Mapping[str, str] | None = None,
    client_factory: Callable[[Settings, str], MemoryClient] | None = None,
    out: TextIO | None = None,
) -> int:
    args = _build_parser().parse_args(argv)
    out = out or sys.stdout
    try:
        settings = Settings.from_env(environ)
        api_key = load_api_key(settings)
    except ConfigError as exc:
        print(f"Config error: {scrub(str(exc))}", file=sys.stderr)
        return 1

    factory = client_factory or (lambda s, key: HttpMemoryClient(s.api_url, key))
    client = factory(settings, api_key)
    recall = Recall(settings, client, CallExecutor.from_settings(settings))
    try:
        if args.command == "recall":
            print(recall.recall(" ".join(args.query), limit=args.limit), file=out)
        else:
            print(json.dumps(recall.profile(), indent=2), file=out)
    except Exception as exc:
        print(f"Recall failed: {scrub(str(exc) or repr(exc))}", file=sys.stderr)
        return 1
    finally:
        close = getattr(client, "close", None)
        if callable(close):
            close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
