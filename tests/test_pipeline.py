import hashlib
import json
import threading

import pytest

from docs_organiser.categorizer import AnalysisResult, CategorizationEngine, CategorizationError
from docs_organiser.context_manager import ContextManager
from docs_organiser.extractor import ExtractionError
from docs_organiser.pipeline import Pipeline, RunSummary, scan_files
from docs_organiser.registry import DEFAULT_CATEGORIES, CategoryRegistry
from docs_organiser.utils import DeadlineExceeded

CREATE = "docs_organiser.llm.OpenAIChatMixin._create_completion"


def reply_for(category, title, score=0.9):
    return json.dumps({"category": category, "title": title, "confidence_score": score})


@pytest.fixture
def registry():
    return CategoryRegistry()


@pytest.fixture
def pipeline(settings, char_tokenizer, registry):
    engine = CategorizationEngine(settings, ContextManager(char_tokenizer, 100_000), registry)
    return Pipeline(settings, engine, registry)


def fake_server(mocker, make_response, replies):
    """Answer each request based on a keyword found in the document text."""

    def _create(**kwargs):
        user_prompt = kwargs["messages"][1]["content"]
        for keyword, reply in replies.items():
            if keyword in user_prompt:
                return make_response(reply)
        return make_response("I do not know.")

    return mocker.patch(CREATE, side_effect=_create)


def test_run_moves_supported_files(pipeline, settings, mocker, make_response, make_pdf):
    make_pdf(settings.SOURCE_DIR / "scan_0001.pdf", "Quarterly invoice from ACME Corp")
    (settings.SOURCE_DIR / "nested").mkdir()
    (settings.SOURCE_DIR / "nested" / "minutes.txt").write_text("meeting minutes for the board")
    (settings.SOURCE_DIR / "photo.jpg").write_bytes(b"\xff\xd8\xff")
    mock_create = fake_server(
        mocker,
        make_response,
        {
            "invoice": reply_for("Finance", "ACME Invoice: Q3"),
            "minutes": reply_for("Work", "Board_Minutes"),
        },
    )

    summary = pipeline.run()

    assert isinstance(summary, RunSummary)
    assert (summary.total, summary.processed, summary.failed) == (2, 2, 0)
    assert not summary.cancelled
    assert mock_create.call_count == 2
    assert (settings.DEST_DIR / "Finance" / "ACME Invoice_ Q3.pdf").read_bytes().startswith(b"%PDF")
    assert (settings.DEST_DIR / "Work" / "Board_Minutes.txt").exists()
    assert not (settings.SOURCE_DIR / "scan_0001.pdf").exists()
    assert (settings.SOURCE_DIR / "photo.jpg").exists()
    assert "- Successfully Moved: 2" in summary.render()

def test_run_uses_discovered_categories(pipeline, settings, registry, mocker, make_response):
    (settings.DEST_DIR / "Work" / "Projects").mkdir(parents=True)
    (settings.DEST_DIR / "Personal").mkdir()
    (settings.SOURCE_DIR / "plan.txt").write_text("project plan")
    mock_create = fake_server(mocker, make_response, {"project": reply_for("Work/Projects", "Plan")})

    summary = pipeline.run()

    assert registry.categories == ("Personal", "Work", "Work/Projects", "Misc")
    assert registry.frozen
    system_prompt = mock_create.call_args.kwargs["messages"][0]["content"]
    assert "Personal, Work, Work/Projects, Misc" in system_prompt
    assert summary.processed == 1
    assert (settings.DEST_DIR / "Work" / "Projects" / "Plan.txt").exists()


def test_run_empty_destination_keeps_default_categories(pipeline, settings, registry):
    summary = pipeline.run()

    assert registry.categories == DEFAULT_CATEGORIES
    assert (summary.total, summary.processed, summary.failed) == (0, 0, 0)


def test_run_manual_categories_skip_discovery(settings, char_tokenizer, registry, mocker, make_response):
    settings.CATEGORIES = ["Invoices", "Letters"]
    (settings.DEST_DIR / "Old").mkdir()
    (settings.SOURCE_DIR / "bill.txt").write_text("invoice number 42")
    fake_server(mocker, make_response, {"invoice": reply_for("Invoices", "Invoice_42")})
    engine = CategorizationEngine(settings, ContextManager(char_tokenizer, 100_000), registry)

    summary = Pipeline(settings, engine, registry).run()

    assert registry.categories == ("Invoices", "Letters", "Misc")
    assert summary.processed == 1
    assert (settings.DEST_DIR / "Invoices" / "Invoice_42.txt").exists()


def test_run_resolves_name_collision_with_hash(pipeline, settings, mocker, make_response):
    (settings.DEST_DIR / "Work").mkdir()
    (settings.DEST_DIR / "Work" / "Report.txt").write_text("already here")
    (settings.SOURCE_DIR / "report.txt").write_text("quarterly report")
    fake_server(mocker, make_response, {"quarterly": reply_for("Work", "Report")})

    summary = pipeline.run()

    digest = hashlib.sha256(b"quarterly report").hexdigest()[:8]
    assert summary.processed == 1
    assert (settings.DEST_DIR / "Work" / "Report.txt").read_text() == "already here"
    assert (settings.DEST_DIR / "Work" / f"Report_{digest}.txt").read_text() == "quarterly report"


def test_run_invalid_replies_move_file_to_fallback(pipeline, settings, mocker, make_response):
    (settings.SOURCE_DIR / "weird name?.txt").write_text("gibberish")
    mock_create = fake_server(mocker, make_response, {})

    summary = pipeline.run()

    assert mock_create.call_count == settings.MAX_ATTEMPTS
    assert summary.processed == 1
    assert summary.failed == 0
    assert (settings.DEST_DIR / "Misc" / "weird name_.txt").exists()


def test_run_counts_extraction_failure(settings, registry, mocker):
    (settings.SOURCE_DIR / "broken.pdf").write_bytes(b"garbage")
    (settings.SOURCE_DIR / "fine.txt").write_text("fine")
    engine = mocker.Mock()
    engine.categorize.return_value = (AnalysisResult("Work", "Fine", 0.8), None)

    def extract(path, limit):
        if path.suffix == ".pdf":
            raise ExtractionError("not a pdf")
        return path.read_text()

    summary = Pipeline(settings, engine, registry, extract=extract).run()

    assert (summary.total, summary.processed, summary.failed) == (2, 1, 1)
    assert (settings.SOURCE_DIR / "broken.pdf").exists()
    engine.categorize.assert_called_once()


def test_run_isolates_unexpected_errors(settings, registry, mocker):
    (settings.SOURCE_DIR / "bad.txt").write_text("explode")
    (settings.SOURCE_DIR / "good.txt").write_text("fine")
    engine = mocker.Mock()

    def categorize(text, deadline):
        if text == "explode":
            raise RuntimeError("unexpected")
        return AnalysisResult("Work", "Good", 0.7), None

    engine.categorize.side_effect = categorize

    summary = Pipeline(settings, engine, registry).run()

    assert (summary.total, summary.processed, summary.failed) == (2, 1, 1)
    assert (settings.SOURCE_DIR / "bad.txt").exists()
    assert (settings.DEST_DIR / "Work" / "Good.txt").exists()


def test_run_counts_timed_out_file_as_failed(settings, registry, mocker):
    (settings.SOURCE_DIR / "slow.txt").write_text("slow")
    engine = mocker.Mock()
    engine.categorize.side_effect = DeadlineExceeded("deadline exceeded")

    summary = Pipeline(settings, engine, registry).run()

    assert (summary.total, summary.processed, summary.failed) == (1, 0, 1)
    assert (settings.SOURCE_DIR / "slow.txt").exists()


def test_run_counts_move_failure(settings, registry, mocker):
    (settings.SOURCE_DIR / "a.txt").write_text("a")
    engine = mocker.Mock()
    engine.categorize.return_value = (AnalysisResult("Work", "A", 0.9), None)
    move = mocker.Mock(side_effect=PermissionError("read-only"))

    summary = Pipeline(settings, engine, registry, move=move).run()

    assert (summary.processed, summary.failed) == (0, 1)


def test_run_rejects_category_escaping_destination(settings, mocker):
    registry = CategoryRegistry(["../outside"])
    settings.CATEGORIES = ["../outside"]
    (settings.SOURCE_DIR / "a.txt").write_text("a")
    engine = mocker.Mock()
    engine.categorize.return_value = (AnalysisResult("../outside", "A", 0.9), None)

    summary = Pipeline(settings, engine, registry).run()

    assert summary.failed == 1
    assert (settings.SOURCE_DIR / "a.txt").exists()


def test_process_file_cancelled_leaves_file_uncounted(settings, registry, mocker):
    path = settings.SOURCE_DIR / "a.txt"
    path.write_text("a")
    engine = mocker.Mock()
    cancel_event = threading.Event()
    cancel_event.set()
    pipeline = Pipeline(settings, engine, registry)

    pipeline.process_file(path, cancel_event)

    assert pipeline.counters.snapshot() == (0, 0, 0)
    assert path.exists()
    engine.categorize.assert_not_called()


def test_run_with_cancel_event_already_set(settings, registry, mocker):
    (settings.SOURCE_DIR / "a.txt").write_text("a")
    engine = mocker.Mock()
    cancel_event = threading.Event()
    cancel_event.set()

    summary = Pipeline(settings, engine, registry).run(cancel_event)

    assert summary.cancelled
    assert summary.processed == 0
    engine.categorize.assert_not_called()


def test_run_missing_source_directory(settings, registry, mocker):
    settings.SOURCE_DIR = settings.SOURCE_DIR / "missing"

    with pytest.raises(FileNotFoundError):
        Pipeline(settings, mocker.Mock(), registry).run()


def test_categorization_error_logged_and_file_kept_name(settings, registry, mocker):
    (settings.SOURCE_DIR / "scan 01.txt").write_text("???")
    engine = mocker.Mock()
    engine.categorize.return_value = (
        AnalysisResult("Misc", "Unknown_Doc", 0.0),
        CategorizationError("failed to get valid structured output after 3 attempts"),
    )

    summary = Pipeline(settings, engine, registry).run()

    assert summary.processed == 1
    assert (settings.DEST_DIR / "Misc" / "scan 01.txt").exists()


def test_scan_files_filters_extensions_and_sorts(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "z.PDF").write_bytes(b"")
    (tmp_path / "a.md").write_text("")
    (tmp_path / "c.txt").write_text("")
    (tmp_path / "d.docx").write_text("")

    names = [p.relative_to(tmp_path).as_posix() for p in scan_files(tmp_path)]

    assert names == ["a.md", "c.txt", "b/z.PDF"]
