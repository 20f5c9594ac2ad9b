import argparse
import asyncio
import logging
import sys

from app.container import build_container
from app.logging import configure_logging
from app.settings import settings
from domain.schemas import DocumentType

log = logging.getLogger("ingest_all")


async def main(args: argparse.Namespace) -> int:
    container = build_container(settings)
    try:
        await container.start(resume_jobs=False)
        service = container.ingestion

        if args.reconcile:
            report = await service.reconcile(purge=args.purge)
            log.info("Checked %d chunk references, %d orphaned%s", report.checked,
                     len(report.orphaned_chunk_ids), " (purged)" if report.purged else "")
            return 0

        if args.file:
            doc = await service.ingest(args.file, args.type, args.version)
            log.info("Document %s ready: %s v%s (%s)", doc.id, doc.type, doc.version, doc.path)
            return 0

        report = await service.ingest_directory(args.dir or settings.GROUND_TRUTH_DIR)
        for doc in report.documents:
            log.info("  %s  %-16s v%s  %s", doc.id, doc.type, doc.version, doc.path)
        for name, error in report.failures:
            log.error("  FAILED %s: %s", name, error)
        stats = service.stats()
        log.info("Ingestion completed: %d documents, %d chunks, by type %s",
                 stats["total_documents"], stats["total_chunks"], stats["documents_by_type"])
        return 1 if report.failures else 0
    finally:
        await container.aclose()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest ground-truth documents into the vector store")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--dir", help="Directory of PDF/text documents (default: GROUND_TRUTH_DIR)")
    source.add_argument("--file", help="Single document to ingest")
    source.add_argument("--reconcile", action="store_true",
                        help="Check chunk references against the vector store")
    parser.add_argument("--type", choices=[t.value for t in DocumentType],
                        help="Document type, required with --file")
    parser.add_argument("--version", default="1.0", help="Document version (default: 1.0)")
    parser.add_argument("--purge", action="store_true", help="With --reconcile, delete orphaned references")
    args = parser.parse_args(argv)
    if args.file and not args.type:
        parser.error("--type is required with --file")
    if args.purge and not args.reconcile:
        parser.error("--purge only applies to --reconcile")
    return args


if __name__ == "__main__":
    configure_logging()
    sys.exit(asyncio.run(main(parse_args())))
