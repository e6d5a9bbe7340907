"""Command-line client for the loop server."""

from __future__ import annotations

import argparse
import json
import uuid

import httpx


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talk to the agent loop server")
    parser.add_argument("--server-url", default="http://localhost:7002", help="Loop server base URL")
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout seconds")
    parser.add_argument("--verbose", action="store_true", help="Print turns, pending calls and trace id")
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Send a user message to a thread")
    ask.add_argument("content", help="User message")
    ask.add_argument("--thread", default=None, help="Thread id (a new one is generated if omitted)")
    ask.add_argument("--workflow", default="simple_agent", help="Workflow name")

    resume = sub.add_parser("resume", help="Resume a thread paused before a step")
    resume.add_argument("thread", help="Thread id")
    resume.add_argument("--workflow", default="human_in_the_loop", help="Workflow name")

    show = sub.add_parser("show", help="Print the latest checkpoint of a thread")
    show.add_argument("thread", help="Thread id")
    return parser


def _request(args: argparse.Namespace) -> httpx.Request:
    base = args.server_url.rstrip("/")
    if args.command == "ask":
        thread = args.thread or str(uuid.uuid4())
        return httpx.Request(
            "POST",
            f"{base}/v1/threads/{thread}/messages",
            json={"content": args.content, "workflow": args.workflow},
        )
    if args.command == "resume":
        return httpx.Request("POST", f"{base}/v1/threads/{args.thread}/resume", json={"workflow": args.workflow})
    return httpx.Request("GET", f"{base}/v1/threads/{args.thread}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Avoid inheriting system proxy settings that can break localhost calls.
    try:
        with httpx.Client(timeout=args.timeout, trust_env=False) as client:
            resp = client.send(_request(args))
    except httpx.ReadTimeout:
        print("Request timed out. The server may still be processing the request.")
        print("Try again with a longer timeout, e.g. --timeout 120")
        return 1
    except httpx.ConnectError as exc:
        print(f"Could not reach the server: {exc}")
        return 1
    if resp.status_code >= 400:
        print(f"Request failed: {resp.status_code}")
        print(resp.text)
        return 1

    data = resp.json()
    if args.command == "show":
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return 0

    print(f"[{data.get('thread_id')}] {data.get('status')}")
    if data.get("answer"):
        print(data["answer"])
    if data.get("status") == "interrupted":
        print("\nPaused before", data.get("next_state"), "with pending calls:")
        print(json.dumps(data.get("pending_calls", []), ensure_ascii=False, indent=2))

    if args.verbose:
        # Debug view to inspect turns and trace_id.
        print("\n--- trace_id ---")
        print(data.get("trace_id"))
        print("\n--- turns ---")
        print(json.dumps(data.get("turns", []), ensure_ascii=False, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
