#!/usr/bin/env python

"""
Command line access to a registry kept in an sqlite file, plus the health server.
"""

import argparse
import logging
import sqlite3
import sys
from contextlib import contextmanager

import requests

from patientregistry import util
from patientregistry.json import JsonEncoder
from patientregistry.seed import seed
from patientregistry.server import create_app
from patientregistry.storage import MemoryStorage, SqliteStorage
from patientregistry.store import PatientStore

logger = logging.getLogger(__name__)


def check_health(server_url: str, timeout: float = 5) -> bool:
    """True if the server at server_url answers its health check."""
    url = server_url.rstrip("/") + "/api/health"
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as err:
        logger.warning(f"{url}: {err}")
        return False
    if resp.status_code != 200:
        logger.warning(f"{url} returned {resp.status_code}")
        return False
    return resp.json().get("status") == "ok"


@contextmanager
def _open_store(args):
    """The ready store for args, on sqlite if --sqlite-file was given."""
    if not args.sqlite_file:
        with PatientStore(MemoryStorage(), name="cli") as store:
            yield store
        return

    conn = sqlite3.connect(
        args.sqlite_file,
        # Use autocommit to not need transactions:
        isolation_level=None,
    )
    try:
        with SqliteStorage(conn, create_table=True) as storage, PatientStore(
            storage, name="cli"
        ) as store:
            yield store
    finally:
        conn.close()


def _serve(args) -> int:
    create_app().run(host=args.host, port=args.port)
    return 0


def _health(args) -> int:
    healthy = check_health(args.server_url)
    print("ok" if healthy else "unhealthy")
    return 0 if healthy else 1


def _seed(args) -> int:
    with _open_store(args) as store:
        num = seed(store)
    print(f"Inserted {num} patients")
    return 0


def _query(args) -> int:
    with _open_store(args) as store:
        result = store.execute_query(args.text)
    print(JsonEncoder().encode(result.to_dict()))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Patient registry.")
    parser.add_argument("--log-level", "-l", default=None, help="Log level")
    parser.add_argument(
        "--sqlite-file",
        help="Sqlite data file.  If given, use sqlite, otherwise memory.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the health server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.set_defaults(func=_serve)

    health = subparsers.add_parser("health", help="Check a running server")
    health.add_argument(
        "--server-url", "-s", required=True, help="URL of the server"
    )
    health.set_defaults(func=_health)

    seed_parser = subparsers.add_parser("seed", help="Insert sample data")
    seed_parser.set_defaults(func=_seed)

    query = subparsers.add_parser("query", help="Run a query, print JSON")
    query.add_argument("text", help="Query text, e.g. 'SELECT * FROM patients'")
    query.set_defaults(func=_query)

    args = parser.parse_args(argv)
    util.logging_basic_config(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
