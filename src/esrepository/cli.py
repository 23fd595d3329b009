"""
esrepository CLI — Command-Line Interface
=========================================

Inspect and load an index through the repository layer, with documents
handled as plain JSON objects.

Usage:
    esrepository get papers 10.1234/example
    esrepository search papers "quantum mechanics" --limit 5
    esrepository dump papers --page-size 1000 > papers.jsonl
    esrepository load papers papers.jsonl --id-field id --batch-size 5000
    esrepository delete papers 10.1234/example
    esrepository refresh papers
"""

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from .exceptions import RepositoryError


def get_hosts(args) -> Optional[List[str]]:
    """Extract hosts from args (None falls back to env / defaults)."""
    if args.hosts:
        return args.hosts.split(",")
    return None


def open_repository(args, refresh: bool = False):
    from .config import create_client
    from .repository import Repository

    client = create_client(hosts=get_hosts(args), api_key=args.api_key)
    return client, Repository(client, args.index, refresh=refresh)


def cmd_get(args):
    """Print one document with its version."""
    client, repo = open_repository(args)
    try:
        doc = repo.get(args.id)
        print(json.dumps({
            "_id": doc.id,
            "_seq_no": doc.seq_no,
            "_primary_term": doc.primary_term,
            "_source": doc.value,
        }, indent=2, ensure_ascii=False))
    finally:
        client.close()


def cmd_search(args):
    """Run a query_string search."""
    client, repo = open_repository(args)
    try:
        start = time.time()
        page = repo.search(
            {"query_string": {"query": args.query}},
            size=args.limit,
        )
        elapsed_ms = (time.time() - start) * 1000

        print(f"\nQuery: {args.query}")
        print(f"Results: {len(page)} of {page.total} (in {elapsed_ms:.1f}ms)\n")

        for hit in page:
            score = f"{hit.score:.2f}" if hit.score is not None else "-"
            print(f"[{score}] {hit.id}")
            if hit.value is not None:
                preview = json.dumps(hit.value, ensure_ascii=False)
                print(f"  {preview[:70] + '...' if len(preview) > 70 else preview}\n")
    finally:
        client.close()


def cmd_dump(args):
    """Scroll through the whole index, one JSON line per document."""
    client, repo = open_repository(args)
    try:
        count = 0
        with repo.scroll(page_size=args.page_size, keep_alive=args.keep_alive) as hits:
            for hit in hits:
                print(json.dumps({"_id": hit.id, "_source": hit.value}, ensure_ascii=False))
                count += 1
        print(f"Dumped {count:,} documents in {hits.pages} pages", file=sys.stderr)
    finally:
        client.close()


def cmd_load(args):
    """Bulk-load a JSON lines file."""
    client, repo = open_repository(args)
    failures = []

    def on_result(result):
        if not result.ok:
            failures.append(result)
            print(f"  FAILED {result.id}: {result.error}", file=sys.stderr)

    start = time.time()
    total_records = 0
    skipped = 0
    try:
        with repo.bulk(max_actions=args.batch_size, callback=on_result) as session:
            with open(args.file, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, 1):
                    if not line.strip():
                        continue
                    try:
                        rec = json.loads(line)
                    except json.JSONDecodeError:
                        print(f"  line {line_no}: invalid JSON, skipped", file=sys.stderr)
                        skipped += 1
                        continue

                    doc_id = rec.get(args.id_field)
                    if doc_id is None:
                        print(f"  line {line_no}: no '{args.id_field}' field, skipped", file=sys.stderr)
                        skipped += 1
                        continue

                    session.index(str(doc_id), rec)
                    total_records += 1
    finally:
        client.close()

    elapsed = time.time() - start
    print()
    print("=" * 60)
    print("LOAD COMPLETE")
    print("=" * 60)
    print(f"Records queued: {total_records:,}")
    print(f"Indexed: {session.succeeded:,}")
    print(f"Failed: {len(failures):,}")
    print(f"Skipped lines: {skipped:,}")
    print(f"Time elapsed: {elapsed:.1f} seconds")
    print("=" * 60)


def cmd_delete(args):
    """Delete one document."""
    client, repo = open_repository(args)
    try:
        repo.delete(args.id)
        print(f"Deleted {args.index}/{args.id}")
    finally:
        client.close()


def cmd_refresh(args):
    """Refresh an index."""
    client, repo = open_repository(args, refresh=True)
    try:
        repo.refresh()
        print(f"Refreshed index: {args.index}")
    finally:
        client.close()


COMMANDS = {
    "get": cmd_get,
    "search": cmd_search,
    "dump": cmd_dump,
    "load": cmd_load,
    "delete": cmd_delete,
    "refresh": cmd_refresh,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="esrepository",
        description="esrepository — typed repositories over Elasticsearch"
    )

    # Global options
    parser.add_argument(
        "--hosts",
        help="Elasticsearch hosts (comma-separated)",
        default=None
    )
    parser.add_argument(
        "--api-key",
        dest="api_key",
        help="Elasticsearch API key",
        default=None
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    get_parser = subparsers.add_parser("get", help="Fetch a document")
    get_parser.add_argument("index", help="Index name")
    get_parser.add_argument("id", help="Document id")

    search_parser = subparsers.add_parser("search", help="Search an index")
    search_parser.add_argument("index", help="Index name")
    search_parser.add_argument("query", help="Query string")
    search_parser.add_argument("--limit", type=int, default=20, help="Max results")

    dump_parser = subparsers.add_parser("dump", help="Dump every document as JSON lines")
    dump_parser.add_argument("index", help="Index name")
    dump_parser.add_argument("--page-size", type=int, default=1000, help="Documents per page")
    dump_parser.add_argument("--keep-alive", default="1m", help="Scroll cursor expiry")

    load_parser = subparsers.add_parser("load", help="Bulk-load a JSON lines file")
    load_parser.add_argument("index", help="Index name")
    load_parser.add_argument("file", help="JSON lines file")
    load_parser.add_argument("--id-field", default="id", help="Field holding the document id")
    load_parser.add_argument("--batch-size", type=int, default=5000, help="Operations per bulk request")

    delete_parser = subparsers.add_parser("delete", help="Delete a document")
    delete_parser.add_argument("index", help="Index name")
    delete_parser.add_argument("id", help="Document id")

    refresh_parser = subparsers.add_parser("refresh", help="Refresh an index")
    refresh_parser.add_argument("index", help="Index name")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        command(args)
    except RepositoryError as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
