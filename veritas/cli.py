# =============================================================================
# Command Line — Process, Ask, Chat
# =============================================================================
#
#   veritas process 12               ingest a stored document in this process
#   veritas process 12 --queue       hand it to a Celery worker instead
#   veritas ask "What is the notice period?" --doc 12
#   veritas chat --doc 12            interactive conversation, streamed
#
# The same services as the HTTP API: process runs ingest_document, ask runs
# answer(), chat runs stream_answer() and keeps the conversation history.
# Exit code 0 on success, 1 on any error reported to stderr.
# =============================================================================

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable

from veritas.db.engine import get_sync_session
from veritas.db.models import Document, DocumentStatus
from veritas.logging_config import configure_logging
from veritas.services.chat import answer, stream_answer
from veritas.workers.tasks import ingest_document

logger = logging.getLogger(__name__)

EXIT_WORDS = {"exit", "quit"}


class CommandError(Exception):
    """A failure to report on stderr, without a traceback."""


def _load_document(document_id: int) -> Document | None:
    with get_sync_session() as session:
        return session.get(Document, document_id)


def _chat_document(document_id: int | None) -> Document | None:
    """Same rules as the HTTP API: the document must exist and be completed."""
    if document_id is None:
        return None
    doc = _load_document(document_id)
    if doc is None:
        raise CommandError(f"No document found with ID {document_id}.")
    if doc.status != DocumentStatus.COMPLETED:
        raise CommandError(f"Document {document_id} is not ready (status: {doc.status.value}).")
    return doc


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_process(args: argparse.Namespace) -> None:
    doc = _load_document(args.document_id)
    if doc is None:
        raise CommandError(f"Document with ID {args.document_id} not found.")

    options = {
        "document_id": doc.id,
        "file_path": doc.path,
        "chunk_size": args.chunk_size,
        "chunk_overlap": args.chunk_overlap,
        "owner_id": doc.owner_id,
    }

    if args.queue:
        task = ingest_document.delay(**options)
        print(f"Queued '{doc.name}' for ingestion (task {task.id}).")
        return

    print(f"Processing document: {doc.name}")
    try:
        summary = ingest_document(**options)
    except Exception as e:
        raise CommandError(f"Ingestion failed: {e}") from e

    print(
        f"Stored {summary['chunk_count']} chunks "
        f"({summary['skipped_chunks']} skipped) in {summary['vectorstore']}."
    )


def cmd_ask(args: argparse.Namespace) -> None:
    document = _chat_document(args.doc)
    if document is not None:
        print(f"Asking about document '{document.name}'...")
    else:
        print("Asking across all documents...")

    messages = [{"role": "user", "content": args.question}]
    try:
        result = asyncio.run(answer(messages, document=document, owner_id=args.owner))
    except Exception as e:
        raise CommandError(f"Could not answer: {e}") from e

    print(f"\nAnswer:\n{result.answer}")
    if result.context.selected:
        print("\nSources:")
        for chunk in result.context.selected:
            preview = " ".join(chunk.content.split())[:80]
            print(f"  [{chunk.chunk_id}] {preview}")


def cmd_chat(args: argparse.Namespace, read: Callable[[str], str] | None = None) -> None:
    document = _chat_document(args.doc)
    if document is not None:
        print(f"Chatting about document '{document.name}'.")
    else:
        print("Chatting across all documents.")
    print("Type 'exit' to end the conversation.")

    asyncio.run(_chat_loop(document, args.owner, read or input))
    print("Chat session ended.")


async def _chat_loop(
    document: Document | None,
    owner_id: int | None,
    read: Callable[[str], str],
) -> None:
    # One event loop for the whole session
    history: list[dict[str, str]] = []
    while True:
        try:
            question = (await asyncio.to_thread(read, "\nYou: ")).strip()
        except EOFError:
            return
        if question.lower() in EXIT_WORDS:
            return
        if not question:
            continue

        history.append({"role": "user", "content": question})
        reply = await _stream_reply(history, document, owner_id)
        if reply is None:
            # Failed turn: drop the question so the history stays consistent
            history.pop()
        else:
            history.append({"role": "assistant", "content": reply})


async def _stream_reply(
    history: list[dict[str, str]],
    document: Document | None,
    owner_id: int | None,
) -> str | None:
    """Print the answer as it streams; None if the stream ended in an error."""
    parts: list[str] = []
    print("AI: ", end="", flush=True)
    async for event in stream_answer(list(history), document=document, owner_id=owner_id):
        data = event.removeprefix("data: ").strip()
        if data == "[DONE]":
            break
        payload = json.loads(data)
        if "error" in payload:
            print()
            print(f"Error: {payload['error']}", file=sys.stderr)
            return None
        parts.append(payload["content"])
        print(payload["content"], end="", flush=True)
    print()
    return "".join(parts)


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="veritas",
        description="Ingest documents and ask questions grounded in their content.",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL.")
    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Extract, chunk, embed and store a document.")
    process.add_argument("document_id", type=int)
    process.add_argument("--chunk-size", type=int, default=None)
    process.add_argument("--chunk-overlap", type=int, default=None)
    process.add_argument(
        "--queue", action="store_true", help="Send to a Celery worker instead of running here.",
    )
    process.set_defaults(handler=cmd_process)

    ask = commands.add_parser("ask", help="Answer one question from the stored documents.")
    ask.add_argument("question")
    ask.add_argument("--doc", type=int, default=None, help="Restrict to one document.")
    ask.add_argument("--owner", type=int, default=None, help="Restrict to one owner's documents.")
    ask.set_defaults(handler=cmd_ask)

    chat = commands.add_parser("chat", help="Interactive conversation over the stored documents.")
    chat.add_argument("--doc", type=int, default=None, help="Restrict to one document.")
    chat.add_argument("--owner", type=int, default=None, help="Restrict to one owner's documents.")
    chat.set_defaults(handler=cmd_chat)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        args.handler(args)
    except CommandError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print()
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
