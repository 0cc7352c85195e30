"""Command-line access to a room's saved document on a running backend.

    neonroom-portfolio get stool
    neonroom-portfolio set stool stool.json
"""

import argparse
import json
import logging
import sys

import requests
from dotenv import load_dotenv

from services.portfolio_client import PortfolioClient

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Read or update a saved room document")
    p.add_argument("--base-url", default=None,
                   help="Backend URL (default: PORTFOLIO_BASE_URL or http://127.0.0.1:5000)")
    sub = p.add_subparsers(dest="command", required=True)

    get = sub.add_parser("get", help="Print one section (or the whole document)")
    get.add_argument("section", nargs="?", default=None)

    put = sub.add_parser("set", help="Merge a JSON file into one section")
    put.add_argument("section")
    put.add_argument("file", help="JSON object to merge ('-' for stdin)")
    return p.parse_args(argv)


def _read_object(path):
    if path == "-":
        data = json.load(sys.stdin)
    else:
        with open(path) as f:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def main(argv=None, client=None):
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    args = parse_args(argv)
    client = client or PortfolioClient(args.base_url)

    try:
        if args.command == "get":
            if args.section:
                result = client.get_config(args.section)
            else:
                result = client.get_document()
        else:
            result = client.save_config(args.section, _read_object(args.file))
    except (OSError, ValueError, requests.RequestException) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
