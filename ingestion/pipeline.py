"""Standalone ingestion runner (CLI-invokable).

Usage:
    python -m ingestion.pipeline process --document-id <uuid> [--force-reextract]
    python -m ingestion.pipeline reprocess --tenant-id <id> [--force-reextract]
    python -m ingestion.pipeline sweep

Builds all services directly from settings (not via FastAPI Depends, this
runs outside the HTTP context) and executes via ``asyncio.run()``.

Exit codes:
    0: every document processed successfully
    1: failure (error printed to stderr)
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid


async def run_command(args: argparse.Namespace) -> bool:
    """Run one CLI command. Returns True when every document succeeded."""
    # Late imports so importing this module does not load settings.
    from app.core.config import get_settings
    from app.core.container import build_services
    from app.core.logging import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level)
    services = await build_services(settings)

    try:
        if args.command == "process":
            results = [
                await services.ingestion.process_document(
                    args.document_id, force_reextract=args.force_reextract
                )
            ]
        elif args.command == "reprocess":
            results = await services.ingestion.reprocess_tenant_documents(
                args.tenant_id, force_reextract=args.force_reextract
            )
        else:
            results = await services.ingestion.process_pending_documents()
    finally:
        await services.close()

    for r in results:
        mark = "✓" if r.success else "✗"
        detail = f"{r.chunk_count} chunks" if r.success else r.error
        print(f"[ingestion] {mark} {r.document_id}: {detail}")
    print(f"[ingestion] {sum(1 for r in results if r.success)}/{len(results)} documents processed")
    return all(r.success for r in results)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Archi Document Ingestion CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m ingestion.pipeline process \\\n"
            "    --document-id 550e8400-e29b-41d4-a716-446655440000\n"
            "  python -m ingestion.pipeline reprocess --tenant-id acme --force-reextract\n"
        ),
    )
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Process a single document")
    process.add_argument("--document-id", required=True, help="Document UUID")
    process.add_argument(
        "--force-reextract",
        action="store_true",
        help="Ignore cached text and extract the stored file again",
    )

    reprocess = sub.add_parser("reprocess", help="Reprocess every document of a tenant")
    reprocess.add_argument("--tenant-id", required=True, help="Tenant id")
    reprocess.add_argument(
        "--force-reextract",
        action="store_true",
        help="Ignore cached text and extract the stored files again",
    )

    sub.add_parser("sweep", help="Process recent PENDING documents")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint with argument parsing."""
    args = build_parser().parse_args(argv)

    if args.command == "process":
        try:
            uuid.UUID(args.document_id)
        except ValueError:
            print(f"[error] Invalid document UUID: {args.document_id}", file=sys.stderr)
            sys.exit(1)

    try:
        ok = asyncio.run(run_command(args))
    except Exception as e:
        print(f"[error] Pipeline failed: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
