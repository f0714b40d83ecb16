"""Entry point: python -m marcalink <command>

- "serve":                          Storage server (filesystem store over websockets)
- "call <act> [json]":              Send one raw request to the server and print the reply
- "mark <project> <url> <category>":  Mark a link as a paper in a project
- "unmark <project> <url>":         Clear the visited flag of a marked link
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from marcalink.config import MarcalinkConfig, load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve(config: MarcalinkConfig) -> None:
    from marcalink.server.daemon import StorageDaemon

    daemon = StorageDaemon(config)
    asyncio.run(daemon.run())


async def _call(config: MarcalinkConfig, act: str, payload: dict) -> int:
    from marcalink.storage.connection import Connection

    connection = Connection(config.client.url, reconnect_delay=config.client.reconnect_delay)
    await connection.start()
    try:
        if not await connection.wait_open(config.client.open_timeout):
            print(f"Could not connect to {config.client.url}", file=sys.stderr)
            return 1
        reply = await connection.request(act, payload)
    except ConnectionError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1
    finally:
        await connection.close()

    print(
        json.dumps(
            {"act": reply.act, "status": reply.status, "payload": reply.payload, "message": reply.message},
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0 if reply.ok else 1


async def _track(config: MarcalinkConfig, project_id: str, url: str, category: str | None) -> int:
    from marcalink.storage import Storage
    from marcalink.tracking import PaperTracker

    storage = Storage(config)
    await storage.init()
    try:
        opened = await storage.open_project(project_id)
        if not opened.ok:
            print(f"Cannot open project {project_id}: {opened.message}", file=sys.stderr)
            return 1
        tracker = PaperTracker(storage)
        if category is None:
            result = await tracker.unmark_link(url)
        else:
            result = await tracker.mark_link(url, category)
    finally:
        await storage.shutdown()

    if not result.ok:
        print(f"Error: {result.message}", file=sys.stderr)
        return 1
    paper = result.data
    print(f"{paper.id}  {paper.status:<9} {paper.origin:<8} {paper.url}")
    return 0


def _usage() -> None:
    print("Usage: python -m marcalink [serve|call|mark|unmark]")
    print("  serve                            - Run the storage server")
    print("  call <act> [json-payload]        - Send one request and print the reply")
    print("  mark <project> <url> <category>  - Mark a link in a project")
    print("  unmark <project> <url>           - Unmark a link in a project")


def main() -> None:
    args = sys.argv[1:]
    cmd = args[0] if args else ""

    config = load_config()
    _setup_logging(config.log_level)

    if cmd == "serve":
        _run_serve(config)
    elif cmd == "call" and len(args) >= 2:
        try:
            payload = json.loads(args[2]) if len(args) > 2 else {}
        except json.JSONDecodeError as e:
            print(f"Invalid JSON payload: {e}", file=sys.stderr)
            sys.exit(2)
        sys.exit(asyncio.run(_call(config, args[1], payload)))
    elif cmd == "mark" and len(args) == 4:
        sys.exit(asyncio.run(_track(config, args[1], args[2], args[3])))
    elif cmd == "unmark" and len(args) == 3:
        sys.exit(asyncio.run(_track(config, args[1], args[2], None)))
    else:
        _usage()
        sys.exit(1)


if __name__ == "__main__":
    main()
