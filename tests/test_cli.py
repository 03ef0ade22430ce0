# =============================================================================
# Unit Tests — Command Line
# =============================================================================
#
# main() with the document lookup, the ingestion task and the answering
# services patched. Input for `chat` comes from a patched input().
# =============================================================================

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from veritas.cli import build_parser, main
from veritas.db.models import DocumentStatus
from veritas.services.chat import DONE_EVENT
from veritas.services.reranker import RetrievedChunk


def _document(status: DocumentStatus = DocumentStatus.COMPLETED):
    return SimpleNamespace(
        id=12, name="lease.pdf", path="/data/uploads/12_lease.pdf", owner_id=3, status=status,
    )


def _events(*deltas: str, error: str | None = None) -> list[str]:
    events = [f"data: {json.dumps({'content': d})}\n\n" for d in deltas]
    if error is not None:
        return events + [f"data: {json.dumps({'error': error})}\n\n"]
    return events + [DONE_EVENT]


class FakeStream:
    """stream_answer stand-in: one scripted reply per call, history recorded."""

    def __init__(self, *replies: list[str]):
        self.replies = list(replies)
        self.histories: list[list[dict]] = []
        self.scopes: list[tuple] = []

    async def __call__(self, messages, document=None, owner_id=None):
        self.histories.append(messages)
        self.scopes.append((document, owner_id))
        for event in self.replies.pop(0):
            yield event


# ---------------------------------------------------------------------------
# Test: process
# ---------------------------------------------------------------------------


class TestProcess:

    def test_runs_ingestion_in_process(self, capsys):
        task = MagicMock(return_value={
            "chunk_count": 4, "skipped_chunks": 1, "vectorstore": "pgvector",
        })
        with (
            patch("veritas.cli._load_document", return_value=_document()),
            patch("veritas.cli.ingest_document", task),
        ):
            code = main(["process", "12", "--chunk-size", "500"])

        assert code == 0
        task.assert_called_once_with(
            document_id=12,
            file_path="/data/uploads/12_lease.pdf",
            chunk_size=500,
            chunk_overlap=None,
            owner_id=3,
        )
        task.delay.assert_not_called()
        assert "Stored 4 chunks (1 skipped) in pgvector." in capsys.readouterr().out

    def test_queue_sends_to_worker(self, capsys):
        task = MagicMock()
        task.delay.return_value = SimpleNamespace(id="task-abc")
        with (
            patch("veritas.cli._load_document", return_value=_document()),
            patch("veritas.cli.ingest_document", task),
        ):
            code = main(["process", "12", "--queue"])

        assert code == 0
        task.assert_not_called()
        assert task.delay.call_args.kwargs["document_id"] == 12
        assert "task task-abc" in capsys.readouterr().out

    def test_unknown_document(self, capsys):
        task = MagicMock()
        with (
            patch("veritas.cli._load_document", return_value=None),
            patch("veritas.cli.ingest_document", task),
        ):
            code = main(["process", "99"])

        assert code == 1
        task.assert_not_called()
        assert "Document with ID 99 not found." in capsys.readouterr().err

    def test_ingestion_failure_is_reported(self, capsys):
        task = MagicMock(side_effect=RuntimeError("No chunks were successfully embedded"))
        with (
            patch("veritas.cli._load_document", return_value=_document()),
            patch("veritas.cli.ingest_document", task),
        ):
            code = main(["process", "12"])

        assert code == 1
        assert "Ingestion failed: No chunks were successfully embedded" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Test: ask
# ---------------------------------------------------------------------------


class TestAsk:

    def test_prints_answer_and_sources(self, capsys):
        doc = _document()
        result = SimpleNamespace(
            answer="Thirty days.",
            context=SimpleNamespace(selected=[RetrievedChunk(7, 12, "Notice period\nis 30 days.")]),
        )
        answer = AsyncMock(return_value=result)
        with (
            patch("veritas.cli._load_document", return_value=doc),
            patch("veritas.cli.answer", answer),
        ):
            code = main(["ask", "What is the notice period?", "--doc", "12"])

        assert code == 0
        assert answer.call_args.args[0] == [{"role": "user", "content": "What is the notice period?"}]
        assert answer.call_args.kwargs == {"document": doc, "owner_id": None}
        out = capsys.readouterr().out
        assert "Thirty days." in out
        assert "[7] Notice period is 30 days." in out

    def test_unfinished_document_is_refused(self, capsys):
        answer = AsyncMock()
        with (
            patch("veritas.cli._load_document", return_value=_document(DocumentStatus.PROCESSING)),
            patch("veritas.cli.answer", answer),
        ):
            code = main(["ask", "anything", "--doc", "12"])

        assert code == 1
        answer.assert_not_called()
        assert "not ready (status: processing)" in capsys.readouterr().err

    def test_owner_scope_without_document(self):
        answer = AsyncMock(return_value=SimpleNamespace(
            answer="ok", context=SimpleNamespace(selected=[]),
        ))
        with patch("veritas.cli.answer", answer):
            assert main(["ask", "anything", "--owner", "3"]) == 0
        assert answer.call_args.kwargs == {"document": None, "owner_id": 3}

    def test_model_failure_is_reported(self, capsys):
        with patch("veritas.cli.answer", AsyncMock(side_effect=ConnectionError("model server down"))):
            code = main(["ask", "anything"])

        assert code == 1
        assert "Could not answer: model server down" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Test: chat
# ---------------------------------------------------------------------------


class TestChat:

    def test_history_carries_assistant_replies(self, capsys):
        stream = FakeStream(_events("Rent is ", "100."), _events("30 days."))
        with (
            patch("veritas.cli.stream_answer", stream),
            patch("builtins.input", side_effect=["What is the rent?", "And notice?", "exit"]),
        ):
            code = main(["chat"])

        assert code == 0
        assert stream.histories[1] == [
            {"role": "user", "content": "What is the rent?"},
            {"role": "assistant", "content": "Rent is 100."},
            {"role": "user", "content": "And notice?"},
        ]
        out = capsys.readouterr().out
        assert "AI: Rent is 100." in out
        assert "Chat session ended." in out

    def test_failed_turn_is_dropped_from_history(self, capsys):
        stream = FakeStream(_events("Par", error="connection reset"), _events("Fine."))
        with (
            patch("veritas.cli.stream_answer", stream),
            patch("builtins.input", side_effect=["first", "second", "quit"]),
        ):
            code = main(["chat"])

        assert code == 0
        assert stream.histories[1] == [{"role": "user", "content": "second"}]
        assert "Error: connection reset" in capsys.readouterr().err

    def test_scope_and_blank_lines(self):
        doc = _document()
        stream = FakeStream(_events("ok"))
        with (
            patch("veritas.cli._load_document", return_value=doc),
            patch("veritas.cli.stream_answer", stream),
            patch("builtins.input", side_effect=["   ", "hello", "exit"]),
        ):
            assert main(["chat", "--doc", "12", "--owner", "3"]) == 0

        assert len(stream.histories) == 1
        assert stream.scopes == [(doc, 3)]

    def test_end_of_input_ends_session(self, capsys):
        stream = FakeStream()
        with (
            patch("veritas.cli.stream_answer", stream),
            patch("builtins.input", side_effect=EOFError),
        ):
            assert main(["chat"]) == 0

        assert stream.histories == []
        assert "Chat session ended." in capsys.readouterr().out


class TestParser:

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_document_id_must_be_an_integer(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["process", "lease.pdf"])
