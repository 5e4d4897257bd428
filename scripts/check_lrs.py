#!/usr/bin/env python3
"""
Quick-check script for a learning record store (LRS).

Usage::

    python scripts/check_lrs.py https://lrs.example.com/xapi --key K --secret S
    python scripts/check_lrs.py https://lrs.example.com/xapi --verb experienced

Sends one test statement about a throwaway path and prints:
- The statements URL
- The statement sent
- Stored / status code / reason, plus a response preview
"""

import argparse
import json
import logging
import os
import sys

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from pathgraph.models import LearningPath, Learner, LrsConfig, PathNode
from pathgraph.utils import setup_logging
from pathgraph.xapi import build_statement, send_statement, statements_url


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Quick-check delivery of one xAPI statement to an LRS.",
    )
    parser.add_argument("endpoint", help="LRS base endpoint (…/xapi).")
    parser.add_argument("--key", default="", help="Basic-auth key.")
    parser.add_argument("--secret", default="", help="Basic-auth secret.")
    parser.add_argument("--verb", default="launched")
    parser.add_argument("--base-url", default="http://localhost:8080")
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args()

    setup_logging(level=logging.DEBUG)

    config = LrsConfig(endpoint=args.endpoint, key=args.key, secret=args.secret)
    node = PathNode(id="node_check", type="theory", data={"title": "LRS connectivity check"})
    path = LearningPath(id="lrs-check", title="LRS check", nodes=[node], lrs_config=config)
    statement = build_statement(
        Learner(name="LRS Check"), args.verb, path, node, base_url=args.base_url,
    )

    print(f"\n{'=' * 60}")
    print(f"  URL:  {statements_url(args.endpoint)}")
    print(f"  Verb: {args.verb}")
    print(f"{'=' * 60}")
    print(json.dumps(statement, indent=2))

    result = send_statement(statement, config, timeout=args.timeout)

    print(f"\n{'=' * 60}")
    print(f"  Stored: {'✅ yes' if result.stored else '❌ no'}")
    print(f"  Status: {result.status_code if result.status_code is not None else '—'}")
    if result.reason:
        print(f"  Reason: {result.reason}")
    if result.response:
        preview = result.response[:300]
        print(f"\n  Response preview:\n  {'-' * 56}")
        print(f"  {preview}")
        if len(result.response) > 300:
            print(f"  … ({len(result.response) - 300} more chars)")
    print(f"{'=' * 60}\n")
    sys.exit(0 if result.stored else 1)


if __name__ == "__main__":
    main()
