"""
Document Organiser
==================

This script is the main entry point for the document organiser. It scans a
source directory for documents, asks an OpenAI-compatible model server to
pick a category and a clean title for each one, and moves the files into the
matching category folders under the destination directory.

Configuration comes from command-line flags, ``DOCS_*`` environment variables
and an optional YAML file (see `config.Settings`).
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading

import structlog

from .categorizer import CategorizationEngine
from .config import Settings, setup_libraries
from .context_manager import ContextManager
from .logging_config import configure_logging
from .pipeline import Pipeline
from .registry import CategoryRegistry
from .tokenizer import Tokenizer

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

# CLI flag -> setting name
FLAG_SETTINGS = {
    "src": "DOCS_SRC",
    "dst": "DOCS_DST",
    "api": "DOCS_API",
    "model": "DOCS_MODEL",
    "ctx": "DOCS_CTX",
    "encoding": "DOCS_ENCODING",
    "workers": "DOCS_WORKERS",
    "limit": "DOCS_LIMIT",
    "categories": "DOCS_CATEGORIES",
    "config": "DOCS_CONFIG",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docs-organiser",
        description="Categorize documents with an LLM and move them into category folders.",
    )
    parser.add_argument("--src", help="Source directory to scan for files")
    parser.add_argument("--dst", help="Destination directory to move files into")
    parser.add_argument("--api", help="Base URL of the OpenAI-compatible server")
    parser.add_argument("--model", help="Model name to use in API requests")
    parser.add_argument("--ctx", type=int, help="Model context window (max tokens)")
    parser.add_argument("--encoding", help="Tiktoken encoding or model name for token counting")
    parser.add_argument("--workers", type=int, help="Number of concurrent workers")
    parser.add_argument("--limit", type=int, help="Max characters to extract from each file")
    parser.add_argument(
        "--categories", help="Manual comma-separated list of allowed categories"
    )
    parser.add_argument("--config", help="Path to a YAML configuration file")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one organising pass and return the process exit status."""
    log = structlog.get_logger(__name__)
    args = build_parser().parse_args(argv)
    overrides = {
        setting: getattr(args, flag) for flag, setting in FLAG_SETTINGS.items()
    }

    try:
        settings = Settings(overrides)
        configure_logging(settings)
        setup_libraries(settings)
    except ValueError as e:
        log.error("Configuration error", error=str(e))
        return EXIT_ERROR

    log.info(
        "Starting document organiser",
        source=str(settings.SOURCE_DIR),
        destination=str(settings.DEST_DIR),
        api_url=settings.API_URL,
        model=settings.MODEL_NAME,
        context_window=settings.CONTEXT_WINDOW,
        encoding=settings.ENCODING,
        workers=settings.WORKERS,
        extract_limit=settings.EXTRACT_LIMIT,
    )

    tokenizer = Tokenizer(settings.ENCODING)
    context_manager = ContextManager(tokenizer, settings.CONTEXT_WINDOW)
    registry = CategoryRegistry(fallback=settings.FALLBACK_CATEGORY)
    engine = CategorizationEngine(settings, context_manager, registry)
    pipeline = Pipeline(settings, engine, registry)

    cancel_event = threading.Event()

    def _request_stop(signum, _frame):
        log.info("Stop requested; finishing in-flight files", signal=signum)
        cancel_event.set()

    previous_handlers = {
        sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        summary = pipeline.run(cancel_event)
    except FileNotFoundError as e:
        log.error("Pipeline aborted", error=str(e))
        return EXIT_ERROR
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    print(summary.render(), end="")
    if summary.cancelled:
        log.warning("Pipeline stopped before all files were processed")
        return EXIT_CANCELLED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
