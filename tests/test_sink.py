"""Tests for the output sink."""

import json
from unittest.mock import patch

import pytest

from ledgermigrate.config import Destination
from ledgermigrate.connection import ConnectionState
from ledgermigrate.models import OutputDocument
from ledgermigrate.sink import OutputSink


CONTEXT = {"@base": "http://localhost:8090/fdb/acme/crm/ids/", "xsd": "http://www.w3.org/2001/XMLSchema#"}


def node(i):
    # json.dumps of this node is 31 bytes for single-digit ids
    return {"@id": str(i), "@type": "Person"}


def read(path):
    with open(path) as f:
        return json.load(f)


@pytest.fixture
def document():
    return OutputDocument(ledger="acme/crm", context=CONTEXT)


@pytest.fixture
def target_ledger(make_ledger):
    return make_ledger()


@pytest.fixture
def target(target_ledger):
    with patch("ledgermigrate.connection.requests.Session") as session_cls:
        session_cls.return_value = target_ledger
        yield ConnectionState("http://localhost:58090", ledger_created=False)


class TestFiles:
    """Numbered files in an output directory."""

    def test_layout(self, tmp_path, document):
        out = tmp_path / "out"
        sink = OutputSink(Destination.FILES, document, output_dir=out)
        sink.prepare()
        sink.emit_vocab(OutputDocument(ledger="acme/crm", context={"@base": "terms/"}))
        sink.add(node(1))
        sink.close()

        assert sorted(p.name for p in out.iterdir()) == ["0_vocab.jsonld", "1_data.jsonld"]
        data = read(out / "1_data.jsonld")
        assert data == {
            "ledger": "acme/crm",
            "@context": CONTEXT,
            "insert": [{"@id": "1", "@type": "Person"}],
        }
        assert read(out / "0_vocab.jsonld")["insert"] == []
        assert sink.documents_flushed == 1
        assert sink.nodes_emitted == 1

    def test_size_triggered_flush(self, tmp_path, document):
        sink = OutputSink(Destination.FILES, document, output_dir=tmp_path, flush_size=50)
        sink.prepare()
        for i in range(1, 4):
            sink.add(node(i))
        sink.close()

        assert [n["@id"] for n in read(tmp_path / "1_data.jsonld")["insert"]] == ["1", "2"]
        assert [n["@id"] for n in read(tmp_path / "2_data.jsonld")["insert"]] == ["3"]
        assert sink.documents_flushed == 2
        assert sink.nodes_emitted == 3

    def test_final_flush_when_empty(self, tmp_path, document):
        sink = OutputSink(Destination.FILES, document, output_dir=tmp_path)
        sink.prepare()
        sink.close()

        assert read(tmp_path / "1_data.jsonld")["insert"] == []
        assert sink.documents_flushed == 1

    def test_final_flush_after_exact_flush(self, tmp_path, document):
        sink = OutputSink(Destination.FILES, document, output_dir=tmp_path, flush_size=40)
        sink.prepare()
        sink.add(node(1))
        sink.add(node(2))
        sink.close()

        assert read(tmp_path / "2_data.jsonld")["insert"] == []

    def test_prepare_clears_previous_output(self, tmp_path, document):
        (tmp_path / "7_data.jsonld").write_text("{}")
        (tmp_path / "notes.txt").write_text("keep me")
        sink = OutputSink(Destination.FILES, document, output_dir=tmp_path)
        sink.prepare()

        assert sorted(p.name for p in tmp_path.iterdir()) == ["notes.txt"]

    def test_files_need_directory(self, document):
        with pytest.raises(ValueError):
            OutputSink(Destination.FILES, document)


class TestPrint:
    """Printing to stdout."""

    def test_documents_printed(self, capsys, document):
        sink = OutputSink(Destination.PRINT, document)
        sink.prepare()
        sink.add(node(1))
        sink.close()

        out = capsys.readouterr().out
        assert json.loads(out) == {
            "ledger": "acme/crm",
            "@context": CONTEXT,
            "insert": [{"@id": "1", "@type": "Person"}],
        }


class TestRemote:
    """Transacting into a target ledger."""

    def test_create_then_transact(self, target, target_ledger, document):
        sink = OutputSink(Destination.REMOTE, document, target=target, sleep=lambda _: None)
        assert sink.emit_vocab(OutputDocument(ledger="acme/crm"))
        sink.add(node(1))
        sink.close()

        assert [url.rsplit("/", 1)[-1] for url, _, _ in target_ledger.calls] == [
            "create",
            "transact",
        ]
        assert target_ledger.calls[1][1]["insert"] == [node(1)]
        assert sink.failed_flushes == 0

    def test_transport_failure_retried(self, target, target_ledger, document, no_sleep, transport_error):
        sleep, delays = no_sleep
        target_ledger.failures = [transport_error]
        sink = OutputSink(
            Destination.REMOTE, document, target=target, retry_backoff=3.0, sleep=sleep
        )
        assert sink.flush()

        assert delays == [3.0]
        assert sink.documents_flushed == 1

    def test_rejected_document_does_not_abort(self, target, target_ledger, document, caplog):
        target_ledger.failures = [500]
        sink = OutputSink(Destination.REMOTE, document, target=target, sleep=lambda _: None)

        with caplog.at_level("ERROR", logger="ledgermigrate.sink"):
            assert sink.flush() is False
        sink.add(node(1))
        assert sink.close() is True

        assert sink.failed_flushes == 1
        assert sink.documents_flushed == 1
        assert "continuing" in caplog.text

    def test_remote_needs_target(self, document):
        with pytest.raises(ValueError):
            OutputSink(Destination.REMOTE, document)
