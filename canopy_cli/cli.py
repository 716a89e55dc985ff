from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any

DEFAULT_SEARCH_URL = "http://localhost:8083"


def _resolve_search_url(value: str | None) -> str:
    return (value or os.getenv("CANOPY_SEARCH_URL", DEFAULT_SEARCH_URL)).rstrip("/")


def _auth_headers(user: str | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    token = os.getenv("CANOPY_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if user:
        headers["x-user-id"] = user
    return headers


def _request_json(
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    timeout: int = 30,
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
    request_headers = {"Content-Type": "application/json", **(headers or {})}
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers=request_headers,
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            if not raw:
                return {}
            return json.loads(raw.decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        detail: str | dict[str, Any] = body
        try:
            detail = json.loads(body)
        except json.JSONDecodeError:
            detail = body or exc.reason
        raise RuntimeError(f"HTTP {exc.code} {detail}") from exc


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _uvicorn_cmd(host: str, port: int, log_level: str) -> list[str]:
    return [
        "uvicorn",
        "local_adapter.search_service:app",
        "--host",
        host,
        "--port",
        str(port),
        "--log-level",
        log_level,
    ]


def cmd_serve(args: argparse.Namespace) -> int:
    cmd = _uvicorn_cmd(args.host, args.port, args.log_level)
    if args.dry_run:
        print(" ".join(cmd))
        return 0
    try:
        return subprocess.call(cmd)
    except KeyboardInterrupt:
        return 0


def cmd_seed(args: argparse.Namespace) -> int:
    from canopy_core.config import get_config
    from canopy_core.providers.embeddings import embed_query
    from canopy_core.stores.database import get_database
    from canopy_core.stores.workspace import WorkspaceStore

    path = Path(args.file)
    payload = json.loads(path.read_text(encoding="utf-8"))
    config = get_config()
    store = WorkspaceStore(get_database(args.db or config.database_path))

    def _embed(text: str) -> list[float]:
        return embed_query(text, dim=config.embedding_dim)

    counts = store.load_seed(payload, embed=None if args.no_embed else _embed)
    _print_json({"seeded": counts, "database_path": store.db.path})
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    search_url = _resolve_search_url(args.search_url)
    payload: dict[str, Any] = {
        "query": args.query,
        "workspaceId": args.workspace,
        "limit": args.limit,
        "includeFrames": not args.no_frames,
    }
    if args.search_types:
        payload["searchTypes"] = args.search_types
    response = _request_json(
        "POST",
        f"{search_url}/search",
        payload=payload,
        headers=_auth_headers(args.user),
    )
    _print_json(response)
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    search_url = _resolve_search_url(args.search_url)
    params = urllib.parse.urlencode({"workspaceId": args.workspace})
    response = _request_json(
        "GET",
        f"{search_url}/search?{params}",
        headers=_auth_headers(args.user),
    )
    _print_json(response)
    return 0


def cmd_history_clear(args: argparse.Namespace) -> int:
    if not args.id and not args.workspace:
        raise ValueError("--id or --workspace is required")
    search_url = _resolve_search_url(args.search_url)
    if args.id:
        params = urllib.parse.urlencode({"id": args.id})
    else:
        params = urllib.parse.urlencode(
            {"workspaceId": args.workspace, "clearAll": "true"}
        )
    response = _request_json(
        "DELETE",
        f"{search_url}/search?{params}",
        headers=_auth_headers(args.user),
    )
    _print_json(response)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    search_url = _resolve_search_url(args.search_url)
    _print_json(_request_json("GET", f"{search_url}/health"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="canopy")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the search service")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8083)
    serve_parser.add_argument("--log-level", default="info")
    serve_parser.add_argument("--dry-run", action="store_true", help="Print command only")
    serve_parser.set_defaults(func=cmd_serve)

    seed_parser = subparsers.add_parser(
        "seed", help="Load a workspace seed file into the local database"
    )
    seed_parser.add_argument("--file", required=True)
    seed_parser.add_argument("--db", help="DuckDB path (defaults to CANOPY_DB_PATH)")
    seed_parser.add_argument(
        "--no-embed",
        action="store_true",
        help="Do not compute missing text embeddings",
    )
    seed_parser.set_defaults(func=cmd_seed)

    search_parser = subparsers.add_parser("search", help="Search a workspace")
    search_parser.add_argument("--workspace", required=True)
    search_parser.add_argument("--query", required=True)
    search_parser.add_argument("--limit", type=int, default=30)
    search_parser.add_argument(
        "--search-types",
        nargs="*",
        choices=["semantic", "text", "visual"],
    )
    search_parser.add_argument("--no-frames", action="store_true")
    search_parser.add_argument("--user")
    search_parser.add_argument("--search-url")
    search_parser.set_defaults(func=cmd_search)

    history_parser = subparsers.add_parser(
        "history", help="Show recent searches and suggested tags"
    )
    history_parser.add_argument("--workspace", required=True)
    history_parser.add_argument("--user")
    history_parser.add_argument("--search-url")
    history_parser.set_defaults(func=cmd_history)

    clear_parser = subparsers.add_parser(
        "history-clear", help="Delete one history entry or a workspace's history"
    )
    clear_parser.add_argument("--workspace")
    clear_parser.add_argument("--id")
    clear_parser.add_argument("--user")
    clear_parser.add_argument("--search-url")
    clear_parser.set_defaults(func=cmd_history_clear)

    status_parser = subparsers.add_parser("status", help="Check service health")
    status_parser.add_argument("--search-url")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
