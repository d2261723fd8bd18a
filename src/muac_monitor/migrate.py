"""One-off data maintenance commands for label tables.

Usage::

    python -m muac_monitor.migrate init-db
    python -m muac_monitor.migrate backfill-label-codes
    python -m muac_monitor.migrate seed-labels
"""

from __future__ import annotations

import argparse
import json
from typing import Any

from sqlalchemy.orm import Session

from .config import get_settings
from .labels import LabelResolver, backfill_label_codes, recommendation_template, seed_default_labels, tag_template
from .repositories import RecommendationRepository, SeverityTagRepository


def backfill(session: Session) -> dict[str, int]:
    """Assign severity codes to legacy label rows that predate the column."""

    thresholds = get_settings().thresholds
    return {
        "severity_tags": backfill_label_codes(
            SeverityTagRepository(session), lambda code: tag_template(code, thresholds).name
        ),
        "recommendations": backfill_label_codes(
            RecommendationRepository(session), lambda code: recommendation_template(code, thresholds).name
        ),
    }


def seed(session: Session) -> dict[str, int]:
    resolver = LabelResolver(
        tag_store=SeverityTagRepository(session),
        recommendation_store=RecommendationRepository(session),
        thresholds=get_settings().thresholds,
    )
    return seed_default_labels(resolver)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Maintain MUAC label tables")
    parser.add_argument("command", choices=["init-db", "backfill-label-codes", "seed-labels"])
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> dict[str, Any]:
    from .db import SessionLocal, init_db

    init_db()
    if args.command == "init-db":
        return {"command": args.command, "status": "ok"}

    with SessionLocal() as session:
        if args.command == "backfill-label-codes":
            updated = backfill(session)
        else:
            updated = seed(session)
    return {"command": args.command, "status": "ok", "updated": updated}


def main() -> None:
    print(json.dumps(run(parse_args()), indent=2))


if __name__ == "__main__":
    main()
