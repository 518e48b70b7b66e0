"""Command-line entry point for the annotation store.

Usage:
  python -m abstract_annotator.main ingest abstracts.json
  python -m abstract_annotator.main list
  python -m abstract_annotator.main stats
  python -m abstract_annotator.main export <document-id> [--out FILE]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from abstract_annotator.config import configure_logging, get_config
from abstract_annotator.errors import AnnotatorError
from abstract_annotator.services import AnnotationService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="abstract-annotator",
        description="Manage annotated abstract collections.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    ingest = subparsers.add_parser("ingest", help="Validate and store a JSON upload")
    ingest.add_argument("path", type=Path)

    subparsers.add_parser("list", help="List stored documents, newest first")
    subparsers.add_parser("stats", help="Show aggregate annotation statistics")

    export = subparsers.add_parser("export", help="Export the annotations of a document")
    export.add_argument("document_id")
    export.add_argument("--out", type=Path, default=None, help="Write to FILE instead of stdout")

    return parser


async def _run(service: AnnotationService, args: argparse.Namespace) -> None:
    if args.command == "ingest":
        document = await service.ingest_upload(args.path.read_text(encoding="utf-8"), args.path.name)
        print(f"Stored {document.name} as {document.id} ({document.total_steps} questions)")

    elif args.command == "list":
        for document in await service.list_documents():
            print(f"{document.id}  {document.name}  {document.progress_percent:.1f}%  "
                  f"(uploaded {document.upload_timestamp:%Y-%m-%d})")

    elif args.command == "stats":
        stats = await service.calculate_stats()
        print(f"Sentences:   {stats.total_sentences}")
        print(f"Entities:    {stats.total_entities}")
        print(f"Answered:    {stats.completed_annotations}/{stats.total_annotations}")
        print(f"Completed:   {stats.completed_files} files")
        if stats.failed_documents:
            print(f"Unavailable: {stats.failed_documents} files")

    elif args.command == "export":
        payload = await service.export(args.document_id)
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        if args.out is None:
            print(text)
        else:
            args.out.write_text(text, encoding="utf-8")
            print(f"Exported to {args.out}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config)

    with AnnotationService.from_config(config) as service:
        try:
            asyncio.run(_run(service, args))
        except AnnotatorError as e:
            logger.error(f"{args.command} failed: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
