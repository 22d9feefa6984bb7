from __future__ import annotations

import argparse
import json
import logging

from symbolhub.api.deps import get_symbol_store
from symbolhub.config.settings import get_settings
from symbolhub.ingestion.processor import IngestionProcessor
from symbolhub.instruments.schemas import ProcessType
from symbolhub.shared.db import init_db


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Ingest an instrument master export into the symbol store.")
    parser.add_argument("--source", default=settings.ingestion_source_path or "", help="CSV or JSON export (optionally .gz)")
    parser.add_argument("--source-name", default=settings.ingestion_source_name)
    parser.add_argument("--chunk-size", type=int, default=settings.ingestion_chunk_size)
    parser.add_argument("--manual", action="store_true", help="Record the run as a manual update")
    parser.add_argument("--changed-by", default=None)
    args = parser.parse_args()
    if not args.source:
        parser.error("--source is required when no ingestion source is configured")

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    init_db()
    processor = IngestionProcessor(get_symbol_store(), chunk_size=int(args.chunk_size), source=args.source_name)
    process_type = ProcessType.MANUAL_UPDATE if args.manual else ProcessType.DAILY_UPDATE
    summary = processor.run(args.source, process_type=process_type, changed_by=args.changed_by)
    print(json.dumps(summary.to_dict(), indent=2))


if __name__ == "__main__":
    main()
