import argparse
import asyncio
import json
import sys
import threading
import time
from typing import Any

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from models.tool_response import ToolResponse
from orchestrator.core import WebToolsOrchestrator
from tools.web.errors import ResultNotFoundError, ToolInputError
from tools.web.factory import create_orchestrator_from_env

COMMAND_TOOLS = {
    "search": "web_search",
    "fetch": "fetch_content",
    "code": "code_search",
    "get": "get_search_content",
}


def show_loading_animation(stop_event: threading.Event, label: str) -> None:
    """
    Show a loading animation on stderr.

    Args:
        stop_event: A threading.Event that will be set to stop the animation
        label: Text shown next to the spinner
    """
    while not stop_event.is_set():
        for char in '|/-\\':
            if stop_event.is_set():
                break
            sys.stderr.write(f'\r\033[93m{label} {char}\033[0m')
            sys.stderr.flush()
            time.sleep(0.1)

    # Clear the loading line
    sys.stderr.write('\r' + ' ' * (len(label) + 4) + '\r')
    sys.stderr.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="web-tools",
        description="Search the web, fetch pages and GitHub repositories, and read stored results.",
    )
    parser.add_argument("--details", action="store_true", help="Print result metadata as JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Web search (one or more queries)")
    search.add_argument("queries", nargs="+")
    search.add_argument("-n", "--num-results", type=int)
    search.add_argument("--type", choices=["auto", "instant", "deep"])
    search.add_argument("--category")
    search.add_argument("--include-domain", action="append", dest="include_domains")
    search.add_argument("--exclude-domain", action="append", dest="exclude_domains")

    fetch = sub.add_parser("fetch", help="Fetch URL(s) as markdown")
    fetch.add_argument("urls", nargs="+")
    fetch.add_argument("--force-clone", action="store_true", help="Clone GitHub repos over the size threshold")

    code = sub.add_parser("code", help="Code context search")
    code.add_argument("query")
    code.add_argument("--tokens", type=int, dest="tokens_num")

    get = sub.add_parser("get", help="Retrieve a stored result")
    get.add_argument("response_id")
    get.add_argument("--query")
    get.add_argument("--query-index", type=int)
    get.add_argument("--url")
    get.add_argument("--url-index", type=int)
    get.add_argument("--max-chars", type=int)

    return parser


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


async def run_command(orchestrator: WebToolsOrchestrator, args: argparse.Namespace) -> ToolResponse:
    if args.command == "search":
        return await orchestrator.web_search(_drop_none({
            "queries": args.queries,
            "numResults": args.num_results,
            "type": args.type,
            "category": args.category,
            "includeDomains": args.include_domains,
            "excludeDomains": args.exclude_domains,
        }))
    if args.command == "fetch":
        return await orchestrator.fetch_content({"urls": args.urls, "forceClone": args.force_clone})
    if args.command == "code":
        return await orchestrator.code_search(_drop_none({"query": args.query, "tokensNum": args.tokens_num}))
    return orchestrator.get_search_content(_drop_none({
        "responseId": args.response_id,
        "query": args.query,
        "queryIndex": args.query_index,
        "url": args.url,
        "urlIndex": args.url_index,
        "maxChars": args.max_chars,
    }))


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    orchestrator = create_orchestrator_from_env(persistent=True)
    orchestrator.on_session_start()

    tool_name = COMMAND_TOOLS[args.command]
    if tool_name not in orchestrator.enabled_tools():
        print(f"Error: {tool_name} is disabled in the configuration", file=sys.stderr)
        return 1

    # Show loading animation in a separate thread
    stop_animation = threading.Event()
    loading_thread = None
    if sys.stderr.isatty() and args.command != "get":
        loading_thread = threading.Thread(
            target=show_loading_animation, args=(stop_animation, "Working"), daemon=True
        )
        loading_thread.start()

    try:
        response = asyncio.run(run_command(orchestrator, args))
    except (ToolInputError, ResultNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        orchestrator.abort_all_pending()
        print("\nAborted.", file=sys.stderr)
        return 130
    finally:
        stop_animation.set()
        if loading_thread is not None:
            loading_thread.join()

    print(response.text)
    if args.details:
        print(json.dumps(response.details, indent=2, ensure_ascii=False))
    return 1 if response.is_error else 0


if __name__ == "__main__":
    sys.exit(main())
