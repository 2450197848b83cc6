"""
`semantic-kb` command-line interface.

Commands
--------
semantic-kb add PATH [PATH ...]            -- ingest files (directories are walked)
semantic-kb add PATH --category notes      -- tag the ingested files
semantic-kb add-text "some text"           -- ingest inline text
semantic-kb add-video VIDEO                -- extract audio, transcribe, ingest
semantic-kb search "<query>" --top-k 5     -- semantic search
semantic-kb search "<query>" --json        -- machine-readable results
semantic-kb list [--json]                  -- list stored documents
semantic-kb show ID                        -- print one document's content
semantic-kb delete ID                      -- delete a document
semantic-kb clear --yes                    -- delete everything
semantic-kb status                         -- storage and embedder summary
semantic-kb chat "<message>"               -- retrieval-augmented chat (stub backend)

Global options ``--config`` and ``--db`` override the configuration file and
the database path.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Optional

from .config import Config
from .errors import KnowledgeBaseError, MediaError, TranscriptionError
from .knowledge_base import DEFAULT_CATEGORY, VIDEO_TRANSCRIPT, KnowledgeBase
from .logging_setup import setup_logger
from .parser import SUPPORTED_EXTENSIONS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace) -> Config:
    config = Config.load(getattr(args, "config", None))
    if getattr(args, "db", None):
        config.DB_PATH = args.db
    return config


def _open_kb(config: Config) -> KnowledgeBase:
    return KnowledgeBase.from_config(config)


def _expand_paths(paths: list[str]) -> list[str]:
    """Expand directories into the supported files they contain."""
    files: list[str] = []
    for path in paths:
        if os.path.isdir(path):
            for root, _dirs, names in os.walk(path):
                for name in sorted(names):
                    if os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS:
                        files.append(os.path.join(root, name))
        else:
            files.append(path)
    return files


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_add(args: argparse.Namespace, config: Config) -> None:
    """Ingest one or more files."""
    files = _expand_paths(args.paths)
    if not files:
        print("No supported files found.", file=sys.stderr)
        sys.exit(1)

    backup_dir = args.backup_dir or config.BACKUP_DIR or None
    added = 0
    failed: list[tuple[str, str]] = []

    with _open_kb(config) as kb:
        iterator = files
        if len(files) > 1:
            from tqdm import tqdm
            iterator = tqdm(files, unit="file", desc="Ingesting")

        for path in iterator:
            try:
                doc = kb.add_document(
                    path=path, category=args.category, backup_dir=backup_dir,
                )
            except KnowledgeBaseError as exc:
                failed.append((path, str(exc)))
                continue
            added += 1
            if len(files) == 1:
                print(f"Added {doc.name}  ({doc.id})")

    if len(files) > 1:
        print(f"\nAdded {added} of {len(files)} file(s)")
    for path, reason in failed:
        print(f"  failed: {path}: {reason}", file=sys.stderr)
    if failed and not added:
        sys.exit(1)


def _cmd_add_text(args: argparse.Namespace, config: Config) -> None:
    """Ingest inline text."""
    with _open_kb(config) as kb:
        doc = kb.add_document(content=args.text, category=args.category)
    print(f"Added {doc.name}  ({doc.id})")


def _cmd_add_video(args: argparse.Namespace, config: Config) -> None:
    """Transcribe a video and ingest the transcript."""
    from .media import find_ffmpeg
    from .transcriber import TranscriptionClient, transcribe_video

    if not os.path.isfile(args.video):
        print(f"File not found: {args.video}", file=sys.stderr)
        sys.exit(1)

    client = TranscriptionClient(url=config.ASR_URL, timeout=config.ASR_TIMEOUT)
    print(f"Transcribing {args.video} ...")
    t0 = time.perf_counter()
    text = transcribe_video(
        args.video,
        config.TEMP_DIR,
        client,
        ffmpeg=find_ffmpeg(config.FFMPEG_PATH or None),
    )
    elapsed = time.perf_counter() - t0

    with _open_kb(config) as kb:
        doc = kb.add_document(
            path=args.video, content=text, category=VIDEO_TRANSCRIPT,
        )
    print(f"Added transcript of {doc.name}  ({doc.id}, {len(text)} chars, {elapsed:.1f}s)")


def _cmd_search(args: argparse.Namespace, config: Config) -> None:
    """Semantic search over the knowledge base."""
    top_k = args.top_k or config.SEARCH_LIMIT

    with _open_kb(config) as kb:
        t0 = time.perf_counter()
        results = kb.search(args.query, top_k)
        elapsed_ms = (time.perf_counter() - t0) * 1000

    if args.json:
        _print_json([r.to_dict() for r in results])
        return

    if not results:
        print(f"No results found for: {args.query!r}")
        return

    print(f"\nSearch results for: {args.query!r}  [{len(results)} result(s)]")
    print("-" * 70)
    for i, r in enumerate(results, 1):
        doc = r.document
        print(f"\n  [{i}] {doc.name}  ({doc.category}, {doc.file_type})")
        print(f"       Id     : {doc.id}")
        print(f"       Score  : {r.relevance:.4f}")
        preview = " ".join(r.snippet.split())
        print(f"       Snippet: {preview}")

    print(f"\n  Search time: {elapsed_ms:.1f}ms")


def _cmd_list(args: argparse.Namespace, config: Config) -> None:
    """List stored documents."""
    with _open_kb(config) as kb:
        docs = kb.list_documents()

    if args.json:
        _print_json([d.to_dict() for d in docs])
        return

    if not docs:
        print("  (knowledge base is empty)")
        return
    print(f"\n{len(docs)} document(s)")
    print("-" * 70)
    for d in docs:
        print(f"  {d.id}  {d.category:<18} {d.name}")


def _cmd_show(args: argparse.Namespace, config: Config) -> None:
    with _open_kb(config) as kb:
        doc = kb.get_document(args.id)
    print(f"{doc.name}  ({doc.category}, {doc.file_type}, {doc.created_at})")
    if doc.source_path:
        print(f"Source: {doc.source_path}")
    if doc.backup_path:
        print(f"Backup: {doc.backup_path}")
    print()
    print(doc.content)


def _cmd_delete(args: argparse.Namespace, config: Config) -> None:
    with _open_kb(config) as kb:
        kb.delete_document(args.id)
    print(f"Deleted {args.id}")


def _cmd_clear(args: argparse.Namespace, config: Config) -> None:
    if not args.yes:
        print("Refusing to clear without --yes", file=sys.stderr)
        sys.exit(1)
    with _open_kb(config) as kb:
        kb.clear_all()
    print("Knowledge base cleared")


def _cmd_status(args: argparse.Namespace, config: Config) -> None:
    with _open_kb(config) as kb:
        summary = kb.status()

    print(
        f"\nKnowledge base status:\n"
        f"  Database   : {summary['db_path']}\n"
        f"  Documents  : {summary['documents']}\n"
        f"  Vectors    : {summary['vectors']}\n"
        f"  Embedder   : {summary['embedder']} (dim={summary['dimension']})"
    )
    stale = [d for d in summary["stored_dimensions"] if d != summary["dimension"]]
    if stale:
        print(
            f"  WARNING    : stored vectors with dimension {stale}; "
            "run `semantic-kb clear --yes` and re-add documents"
        )


def _cmd_chat(args: argparse.Namespace, config: Config) -> None:
    from .chat import ChatMessage, EchoChatService, augment_messages

    with _open_kb(config) as kb:
        messages = augment_messages(kb, [ChatMessage(role="user", content=args.message)])
    if messages[0].role == "system":
        logger.debug("Chat context:\n%s", messages[0].content)
    print(EchoChatService().chat(messages))


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="semantic-kb",
        description="Local semantic-search knowledge base",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--db", default=None, help="SQLite database path")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug output to the console",
    )
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- add ---
    add_p = subparsers.add_parser("add", help="Ingest files or directories")
    add_p.add_argument("paths", nargs="+", help="Files or directories to ingest")
    add_p.add_argument(
        "--category", default=DEFAULT_CATEGORY,
        help=f"Category tag (default: {DEFAULT_CATEGORY})",
    )
    add_p.add_argument(
        "--backup-dir", dest="backup_dir", default=None,
        help="Directory for backup copies (default: from config)",
    )
    add_p.set_defaults(func=_cmd_add)

    # --- add-text ---
    text_p = subparsers.add_parser("add-text", help="Ingest inline text")
    text_p.add_argument("text", help="Text content to store")
    text_p.add_argument("--category", default=DEFAULT_CATEGORY)
    text_p.set_defaults(func=_cmd_add_text)

    # --- add-video ---
    video_p = subparsers.add_parser(
        "add-video", help="Transcribe a video and ingest the transcript"
    )
    video_p.add_argument("video", help="Video file path")
    video_p.set_defaults(func=_cmd_add_video)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Semantic search")
    search_p.add_argument("query", help="Natural-language search query")
    search_p.add_argument(
        "--top-k", dest="top_k", type=int, default=None,
        help="Number of results to return (default: from config)",
    )
    search_p.add_argument("--json", action="store_true", help="JSON output")
    search_p.set_defaults(func=_cmd_search)

    # --- list ---
    list_p = subparsers.add_parser("list", help="List documents")
    list_p.add_argument("--json", action="store_true", help="JSON output")
    list_p.set_defaults(func=_cmd_list)

    # --- show ---
    show_p = subparsers.add_parser("show", help="Print a document")
    show_p.add_argument("id", help="Document id")
    show_p.set_defaults(func=_cmd_show)

    # --- delete ---
    delete_p = subparsers.add_parser("delete", help="Delete a document")
    delete_p.add_argument("id", help="Document id")
    delete_p.set_defaults(func=_cmd_delete)

    # --- clear ---
    clear_p = subparsers.add_parser("clear", help="Delete every document")
    clear_p.add_argument("--yes", action="store_true", help="Confirm the deletion")
    clear_p.set_defaults(func=_cmd_clear)

    # --- status ---
    status_p = subparsers.add_parser("status", help="Show storage and embedder status")
    status_p.set_defaults(func=_cmd_status)

    # --- chat ---
    chat_p = subparsers.add_parser("chat", help="Ask a question with retrieved context")
    chat_p.add_argument("message", help="User message")
    chat_p.set_defaults(func=_cmd_chat)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for the ``semantic-kb`` command.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )

    config = _load_config(args)
    setup_logger(config.LOG_DIR, config.LOG_LEVEL)

    try:
        args.func(args, config)
    except (KnowledgeBaseError, MediaError, TranscriptionError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
