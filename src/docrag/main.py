"""
Command line entry point: ``docrag build`` and ``docrag ask``.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from .config.settings import Settings
from .core.errors import DocRAGError
from .observability.logging import get_logger, new_trace_id, setup_logging
from .observability.probe import configure_probes
from .rag.embedder import Embedder, create_embedding_client
from .rag.indexer import IndexBuilder, IndexingProgress
from .rag.retriever import SearchMode
from .rag.service import RAGService

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docrag", description="Retrieval over a document folder")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build the index file from a docs folder")
    build.add_argument("--docs-dir", type=Path, default=None, help="Folder with source documents")
    build.add_argument("--index", type=Path, default=None, help="Index file to write")

    ask = sub.add_parser("ask", help="Retrieve context for a question")
    ask.add_argument("question", help="Question to answer")
    ask.add_argument("--index", type=Path, default=None, help="Index file to read")
    ask.add_argument("--top-k", type=int, default=None, help="Number of chunks to pick")
    ask.add_argument(
        "--mode",
        choices=[m.value for m in SearchMode],
        default=SearchMode.HYBRID.value,
        help="Scoring mode",
    )
    ask.add_argument("--json", action="store_true", help="Print a JSON result")
    ask.add_argument("--answer", action="store_true", help="Also generate an answer")
    return parser


def make_embedder(settings: Settings) -> Embedder:
    return Embedder.from_settings(settings, client=create_embedding_client(settings.models.embeddings))


def _log_progress(progress: IndexingProgress) -> None:
    logger.debug(
        "Build progress",
        status=progress.status.value,
        done=f"{progress.processed_documents}/{progress.total_documents}",
        chunks=progress.total_chunks,
    )


async def run_build(settings: Settings, args: argparse.Namespace) -> int:
    new_trace_id()
    async with make_embedder(settings) as embedder:
        builder = IndexBuilder(settings, embedder)
        result = await builder.build(args.docs_dir, args.index, progress_callback=_log_progress)

    print(
        f"Indexed {result.chunk_count} chunks from {result.file_count} files -> {result.out_file}"
    )
    for skipped in result.skipped:
        print(f"  skipped {skipped.path}: {skipped.reason}")
    return 0


async def run_ask(settings: Settings, args: argparse.Namespace) -> int:
    mode = SearchMode(args.mode)
    async with RAGService(settings, embedder=make_embedder(settings)) as service:
        if args.answer:
            result = await service.answer(args.question, top_k=args.top_k, mode=mode)
        else:
            result = await service.query(args.question, top_k=args.top_k, mode=mode)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return 0

    if not result.hits:
        print("No matching passages.")
    for hit in result.hits:
        print(f"{hit.rank:>2}. [{hit.chunk.label}] score={hit.score:.4f}")
    if args.answer:
        print()
        print(result.answer)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the command and return the exit code."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    if args.index is not None:
        settings.index.index_file = args.index

    setup_logging(settings.observability.log_level)
    configure_probes(settings.observability.enable_metrics, settings.observability.enable_tracing)

    handler = run_build if args.command == "build" else run_ask
    try:
        return asyncio.run(handler(settings, args))
    except DocRAGError as e:
        if getattr(args, "json", False):
            print(json.dumps({"ok": False, "error": e.to_dict()}, ensure_ascii=False))
        else:
            print(f"Error ({e.kind.value}): {e.message}", file=sys.stderr)
        return 1


def cli_main():
    """CLI entry point."""
    try:
        sys.exit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        print(f"Command failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
