#!/usr/bin/env python3
"""Generate a synthetic DynamoDB Streams event file.

The file holds a Lambda-style ``{"Records": [...]}`` event with product and
purchase changes across several tenants, ready for ``replay_batch.py``.
"""

import argparse
import json
import sys
from collections import Counter
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cdc_fanout.generators import ChangeStreamGenerator


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Generate a synthetic DynamoDB Streams event file")
    parser.add_argument(
        "--records",
        type=int,
        default=100,
        help="Number of stream records to generate (default: 100)",
    )
    parser.add_argument(
        "--tenants",
        type=str,
        default="tenant-a,tenant-b,tenant-c",
        help="Comma-separated tenant ids",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducibility (default: 42)",
    )
    parser.add_argument(
        "--delete-ratio",
        type=float,
        default=0.1,
        help="Share of updates that remove the entity instead (default: 0.1)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=project_root / "local" / "stream_event.json",
        help="Output file (default: local/stream_event.json)",
    )
    args = parser.parse_args()

    if args.records <= 0:
        parser.error("--records must be positive")

    tenants = [t.strip() for t in args.tenants.split(",") if t.strip()]
    generator = ChangeStreamGenerator(tenants=tenants, seed=args.seed, delete_ratio=args.delete_ratio)
    event = generator.generate_event(args.records)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(event, f, indent=2, ensure_ascii=False)

    counts = Counter(
        f"{record['eventSourceARN'].split('/')[1]}:{record['eventName']}" for record in event["Records"]
    )
    print(f"Saved {len(event['Records'])} records to {args.output}")
    for name, count in sorted(counts.items()):
        print(f"  {name:<20} {count:>6}")


if __name__ == "__main__":
    main()
