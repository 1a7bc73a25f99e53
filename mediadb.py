#!/usr/bin/env python3
"""movies-db command line.

  mediadb.py serve                      run the HTTP service (uvicorn)
  mediadb.py search --title 'Star*'     query the persistent index offline
  mediadb.py tags --json                tag counts, most used first

Options resolve as CLI flag > environment variable > default:

  -r/--root-dir   MOVIES_DB_ROOT        ./movies-db
  -a/--address    MOVIES_DB_ADDRESS     0.0.0.0:3030
  -f/--ffmpeg     MOVIES_DB_FFMPEG      /usr/bin/
  --index         MOVIES_DB_INDEX       sqlite (or memory)
  -l/--log-level  MOVIES_DB_LOG_LEVEL   info
  --event-log     MOVIES_DB_EVENT_LOG   (stderr)
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from catalog import CatalogError, SearchQuery, SortField, SortOrder
from logs import LOG_LEVELS, configure_logging

INDEX_BACKENDS = ("memory", "sqlite")


@dataclass
class Options:
    root_dir: Path = Path("./movies-db")
    address: str = "0.0.0.0:3030"
    ffmpeg_dir: Path = Path("/usr/bin/")
    index_backend: str = "sqlite"
    log_level: str = "info"
    event_log: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Options":
        env = os.environ if env is None else env
        opts = cls()
        if env.get("MOVIES_DB_ROOT"):
            opts.root_dir = Path(env["MOVIES_DB_ROOT"])
        if env.get("MOVIES_DB_ADDRESS"):
            opts.address = env["MOVIES_DB_ADDRESS"]
        if env.get("MOVIES_DB_FFMPEG"):
            opts.ffmpeg_dir = Path(env["MOVIES_DB_FFMPEG"])
        if env.get("MOVIES_DB_INDEX"):
            opts.index_backend = env["MOVIES_DB_INDEX"]
        if env.get("MOVIES_DB_LOG_LEVEL"):
            opts.log_level = env["MOVIES_DB_LOG_LEVEL"]
        if env.get("MOVIES_DB_EVENT_LOG"):
            opts.event_log = env["MOVIES_DB_EVENT_LOG"]
        opts.validate()
        return opts

    def validate(self) -> None:
        if self.index_backend not in INDEX_BACKENDS:
            raise ValueError(f"unknown index backend {self.index_backend!r} (expected one of {', '.join(INDEX_BACKENDS)})")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {self.log_level!r}")
        self.host_port()

    def host_port(self) -> Tuple[str, int]:
        host, sep, port = self.address.rpartition(":")
        if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"invalid address {self.address!r} (expected host:port)")
        return host, int(port)


def parse_args(argv: List[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Movies catalog service")
    p.add_argument("-r", "--root-dir", dest="root_dir", default=None, help="Directory holding movies.db and the data/ blobs")
    p.add_argument("-a", "--address", default=None, help="host:port to listen on (serve)")
    p.add_argument("-f", "--ffmpeg", dest="ffmpeg_dir", default=None, help="Directory containing ffmpeg and ffprobe")
    p.add_argument("--index", dest="index_backend", choices=INDEX_BACKENDS, default=None, help="Index backend")
    p.add_argument("-l", "--log-level", dest="log_level", choices=list(LOG_LEVELS), default=None)
    p.add_argument("--event-log", dest="event_log", default=None, help="File receiving JSON event lines (default stderr)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Run the HTTP service")

    sp = sub.add_parser("search", help="Search the catalog")
    sp.add_argument("--title", default=None, help="Title pattern (* and ? wildcards)")
    sp.add_argument("--tag", dest="tags", action="append", default=[], help="Required tag (repeatable)")
    sp.add_argument("--sort", choices=[f.value for f in SortField], default=SortField.CREATED_AT.value)
    sp.add_argument("--order", choices=[o.value for o in SortOrder], default=SortOrder.DESCENDING.value)
    sp.add_argument("--offset", type=int, default=None)
    sp.add_argument("--limit", type=int, default=None)
    sp.add_argument("--json", action="store_true")

    tp = sub.add_parser("tags", help="List tag counts")
    tp.add_argument("--json", action="store_true")
    return p.parse_args(argv)


def resolve_options(ns: argparse.Namespace, env: Optional[Mapping[str, str]] = None) -> Options:
    opts = Options.from_env(env)
    overrides = {}
    for field in ("address", "index_backend", "log_level", "event_log"):
        value = getattr(ns, field, None)
        if value is not None:
            overrides[field] = value
    if ns.root_dir is not None:
        overrides["root_dir"] = Path(ns.root_dir)
    if ns.ffmpeg_dir is not None:
        overrides["ffmpeg_dir"] = Path(ns.ffmpeg_dir)
    opts = replace(opts, **overrides)
    opts.validate()
    return opts


def open_index(opts: Options):
    from sqlite_index import DB_FILENAME, SqliteCatalogIndex

    db_path = opts.root_dir / DB_FILENAME
    if not db_path.is_file():
        return None
    return SqliteCatalogIndex(db_path)


def cmd_serve(opts: Options) -> int:
    import uvicorn

    import api

    host, port = opts.host_port()
    # api's lifespan reads the environment
    os.environ.update({
        "MOVIES_DB_ROOT": str(opts.root_dir),
        "MOVIES_DB_ADDRESS": opts.address,
        "MOVIES_DB_FFMPEG": str(opts.ffmpeg_dir),
        "MOVIES_DB_INDEX": opts.index_backend,
        "MOVIES_DB_LOG_LEVEL": opts.log_level,
    })
    if opts.event_log:
        os.environ["MOVIES_DB_EVENT_LOG"] = opts.event_log
    uvicorn.run(api.app, host=host, port=port, log_level="info")
    return 0


def cmd_search(ns, opts: Options) -> int:
    """Print matching entries (id, title) from the persistent index."""
    try:
        query = SearchQuery(
            sort_field=SortField(ns.sort),
            sort_order=SortOrder(ns.order),
            title_pattern=ns.title,
            tags=ns.tags,
            offset=ns.offset,
            limit=ns.limit,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    index = open_index(opts)
    if index is None:
        print(f"Error: no catalog found under {opts.root_dir}", file=sys.stderr)
        return 2
    try:
        records = []
        for id in index.search_movies(query):
            entry = index.get_movie(id)
            records.append({
                "id": id,
                "title": entry.movie.title,
                "tags": entry.movie.tags,
                "created_at": entry.created_at.isoformat(),
                "has_media": entry.media_info is not None,
                "has_preview": entry.preview_info is not None,
            })
    finally:
        index.close()
    if ns.json:
        json.dump(records, sys.stdout, indent=2)
        print()
    elif not records:
        print("No movies found.")
    else:
        for r in records:
            print(f"{r['id']}\t{r['title']}")
        print(f"Total: {len(records)} movie(s)")
    return 0


def cmd_tags(ns, opts: Options) -> int:
    index = open_index(opts)
    if index is None:
        print(f"Error: no catalog found under {opts.root_dir}", file=sys.stderr)
        return 2
    try:
        counts = index.tag_counts()
    finally:
        index.close()
    if ns.json:
        json.dump([[tag, count] for tag, count in counts], sys.stdout, indent=2)
        print()
    else:
        for tag, count in counts:
            print(f"{tag}\t{count}")
    return 0


def main(argv: List[str] | None = None) -> int:
    ns = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        opts = resolve_options(ns)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    configure_logging(opts.log_level, opts.event_log)

    try:
        if ns.cmd == "serve":
            return cmd_serve(opts)
        if ns.cmd == "search":
            return cmd_search(ns, opts)
        if ns.cmd == "tags":
            return cmd_tags(ns, opts)
    except CatalogError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Unknown command", file=sys.stderr)
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
