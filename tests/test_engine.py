"""Tests for the annotation engine end to end (in-memory text source)."""

import pytest

from mcp_line_annotations.engine import AnnotationEngine
from mcp_line_annotations.models import (
    Annotation,
    AnnotationRepositioned,
    AnnotationUnresolved,
    DocumentChange,
    DocumentChangeEvent,
    Matched,
    PersistRequested,
    Unresolved,
)
from mcp_line_annotations.tag_graph import reference_at
from mcp_line_annotations.text_source import BufferTextSource

FILE = "src/config.js"

SOURCE = """\
import fs from 'fs';
import path from 'path';

const DEFAULT_PATH = path.join(__dirname, 'config.json');
function loadConfig() {
  const raw = fs.readFileSync(DEFAULT_PATH, 'utf8');
  return JSON.parse(raw);
}

export default loadConfig;"""


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def buffers():
    source = BufferTextSource()
    source.set_text(FILE, SOURCE)
    return source


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(buffers, clock):
    return AnnotationEngine(buffers, debounce_seconds=0.3, clock=clock)


@pytest.fixture
def events(engine):
    received = []
    engine.subscribe(received.append)
    return received


def _structural(start: int, text: str) -> DocumentChangeEvent:
    return DocumentChangeEvent(changes=[DocumentChange(start, start, text)])


class TestCommands:
    def test_add_annotation_snapshots_line(self, engine, events):
        annotation = engine.add_annotation(FILE, 4, "entry point $load")

        assert annotation.content_snapshot == "function loadConfig() {"
        assert annotation.stored_line == 4
        assert annotation.matched is True
        assert events == [PersistRequested((FILE,))]
        assert engine.tag_index.declarations["load"].annotation_id == annotation.id

    def test_add_replaces_annotation_on_same_line(self, engine):
        first = engine.add_annotation(FILE, 4, "first")
        second = engine.add_annotation(FILE, 4, "second")

        assert [a.id for a in engine.annotations_for(FILE)] == [second.id]
        with pytest.raises(KeyError):
            engine.get_annotation(first.id)

    def test_add_out_of_range(self, engine):
        with pytest.raises(ValueError):
            engine.add_annotation(FILE, 99, "nope")

    def test_add_to_unavailable_file(self, engine):
        with pytest.raises(ValueError):
            engine.add_annotation("missing.js", 0, "nope")

    def test_edit_rebuilds_tags(self, engine):
        annotation = engine.add_annotation(FILE, 4, "$old_name")
        engine.edit_annotation(annotation.id, "$new_name see @other")

        assert sorted(engine.tag_index.declarations) == ["new_name"]
        assert [r.tag_name for r in engine.tag_index.references] == ["other"]
        assert annotation.updated_at >= annotation.created_at

    def test_remove_by_id(self, engine, events):
        annotation = engine.add_annotation(FILE, 4, "$gone")
        events.clear()

        assert engine.remove_annotation(annotation.id) is True
        assert engine.annotations_for(FILE) == []
        assert FILE not in engine.all_annotations()
        assert dict(engine.tag_index.declarations) == {}
        assert events == [PersistRequested((FILE,))]
        assert engine.remove_annotation(annotation.id) is False

    def test_remove_at_line(self, engine):
        engine.add_annotation(FILE, 3, "path")
        engine.add_annotation(FILE, 4, "loader")

        assert engine.remove_annotation_at(FILE, 3) is True
        assert [a.body for a in engine.annotations_for(FILE)] == ["loader"]
        assert engine.remove_annotation_at(FILE, 3) is False

    def test_reanchor_restores_annotation_without_snapshot(self, engine):
        broken = Annotation(file_path=FILE, stored_line=6, content_snapshot="", body="legacy")
        engine.replace_all({FILE: [broken]})
        assert engine.resolve_all(FILE)[broken.id] == Unresolved("missing_snapshot")

        engine.reanchor_annotation(broken.id, 6)

        assert broken.content_snapshot == "return JSON.parse(raw);"
        assert engine.resolve_all(FILE)[broken.id] == Matched(6)

    def test_stats(self, engine):
        engine.add_annotation(FILE, 4, "$load")
        engine.add_annotation(FILE, 6, "uses @load")
        stats = engine.stats()
        assert stats["files"] == 1
        assert stats["annotations"] == 2
        assert stats["tag_declarations"] == 1
        assert stats["tag_references"] == 1
        assert stats["tags"] == ["load"]


class TestResolveAll:
    def test_read_path_does_not_move_annotations(self, engine, buffers):
        annotation = engine.add_annotation(FILE, 4, "loader")
        buffers.set_text(FILE, "// banner\n" + SOURCE)

        assert engine.resolve_all(FILE)[annotation.id] == Matched(5)
        assert annotation.stored_line == 4

    def test_unavailable_text(self, engine, buffers):
        annotation = engine.add_annotation(FILE, 4, "loader")
        buffers.close(FILE)

        assert engine.resolve_all(FILE) == {annotation.id: Unresolved("source_unavailable")}
        assert annotation.matched is False
        assert annotation.stored_line == 4

    def test_missing_snapshot_never_matches_by_line_number(self, engine):
        legacy = Annotation(file_path=FILE, stored_line=2, content_snapshot="", body="old")
        engine.replace_all({FILE: [legacy]})
        # Line 2 is blank, so a naive line-number match would "succeed"
        assert engine.resolve_all(FILE)[legacy.id] == Unresolved("missing_snapshot")


class TestEditFlow:
    def test_insertion_above_repositions_after_debounce(self, engine, buffers, clock, events):
        annotation = engine.add_annotation(FILE, 4, "loader")
        events.clear()

        buffers.set_text(FILE, "// one\n// two\n" + SOURCE)
        engine.notify_change(FILE, _structural(0, "// one\n// two\n"), recent_input=True, now=0.0)

        assert engine.tick(now=0.1) == []
        assert annotation.stored_line == 4

        assert engine.tick(now=0.35) == [FILE]
        assert annotation.stored_line == 6
        assert annotation.content_snapshot == "function loadConfig() {"
        assert AnnotationRepositioned(annotation.id, FILE, 4, 6) in events
        assert PersistRequested((FILE,)) in events

    def test_deletion_above(self, engine, buffers):
        annotation = engine.add_annotation(FILE, 6, "parse")
        lines = SOURCE.split("\n")
        buffers.set_text(FILE, "\n".join(lines[2:]))
        engine.notify_change(
            FILE, DocumentChangeEvent(changes=[DocumentChange(0, 2, "")]), recent_input=True, now=0.0
        )

        engine.flush()

        assert annotation.stored_line == 4

    def test_fast_path_refresh(self, engine, buffers, events):
        annotation = engine.add_annotation(FILE, 4, "loader")
        events.clear()

        buffers.set_text(FILE, SOURCE.replace("loadConfig() {", "loadSettings() {"))
        refreshed = engine.notify_change(
            FILE,
            DocumentChangeEvent(changes=[DocumentChange(4, 4, "Settings")]),
            recent_input=True,
            now=0.0,
        )

        assert refreshed == [annotation.id]
        assert annotation.content_snapshot == "function loadSettings() {"
        assert engine.pending_files == frozenset()
        assert events == [PersistRequested((FILE,))]

    def test_checkout_then_genuine_edit(self, engine, buffers, events):
        kept = engine.add_annotation(FILE, 4, "loader")
        lost = engine.add_annotation(FILE, 3, "default path")
        events.clear()

        checked_out = "// other branch\n\nfunction loadConfig() {\n  return {};\n}"
        buffers.set_text(FILE, checked_out)
        engine.notify_change(
            FILE, DocumentChangeEvent(changes=[DocumentChange(0, 9, checked_out)]),
            recent_input=False, now=0.0,
        )
        engine.tick(now=5.0)

        assert (kept.stored_line, kept.content_snapshot) == (4, "function loadConfig() {")
        assert lost.stored_line == 3
        assert engine.pending_files == frozenset()
        assert events == []

        buffers.set_text(FILE, "\n" + checked_out)
        engine.notify_change(FILE, _structural(0, "\n"), recent_input=True, now=6.0)
        engine.tick(now=6.5)

        assert kept.stored_line == 3
        assert kept.matched is True
        assert lost.matched is False
        assert lost.stored_line == 3
        assert AnnotationUnresolved(lost.id, FILE) in events

    def test_changes_to_unannotated_file_ignored(self, engine):
        assert engine.notify_change("other.js", _structural(0, "\n"), recent_input=True) == []
        assert engine.pending_files == frozenset()

    def test_listener_failure_does_not_break_engine(self, engine):
        def broken(event):
            raise RuntimeError("boom")

        engine.subscribe(broken)
        annotation = engine.add_annotation(FILE, 4, "loader")
        assert annotation.matched

    def test_unsubscribe(self, engine):
        received = []
        unsubscribe = engine.subscribe(received.append)
        unsubscribe()
        engine.add_annotation(FILE, 4, "loader")
        assert received == []


class TestStaleStoredLines:
    def test_single_line_edit_after_checkout_shift(self, engine, buffers, events):
        annotation = engine.add_annotation(FILE, 4, "loader")
        buffers.set_text(FILE, "// generated\n" + SOURCE)
        engine.notify_change(FILE, _structural(0, "// generated\n"), recent_input=False, now=0.0)

        # The user edits line 4, which now holds the DEFAULT_PATH line
        before = buffers.get_lines(FILE)
        edited = list(before)
        edited[4] = "const DEFAULT_PATH = path.join(__dirname, 'settings.json');"
        buffers.set_text(FILE, "\n".join(edited))
        refreshed = engine.notify_change(
            FILE,
            DocumentChangeEvent(changes=[DocumentChange(4, 4, "settings")]),
            recent_input=True,
            now=1.0,
            previous_lines=before,
        )

        assert refreshed == []
        assert annotation.content_snapshot == "function loadConfig() {"
        assert FILE in engine.pending_files

        engine.flush()

        assert annotation.stored_line == 5
        assert annotation.content_snapshot == "function loadConfig() {"
        assert AnnotationRepositioned(annotation.id, FILE, 4, 5) in events

    def test_reads_report_the_resolved_line(self, engine, buffers):
        annotation = engine.add_annotation(FILE, 4, "entry $loader")
        engine.add_annotation(FILE, 6, "see @loader")
        buffers.set_text(FILE, "// generated\n" + SOURCE)
        engine.notify_change(FILE, _structural(0, "// generated\n"), recent_input=False, now=0.0)

        engine.resolve_all(FILE)

        assert annotation.stored_line == 4
        assert annotation.resolved_line == 5
        assert engine.tag_index.declarations["loader"].line == 5
        ref = reference_at(engine.tag_index, FILE, 7, 5)
        assert ref is not None
        assert ref.tag_name == "loader"

    def test_first_edit_after_load_takes_fast_path(self, buffers, clock):
        loaded = Annotation(
            file_path=FILE, stored_line=4, content_snapshot="function loadConfig() {", body="loader"
        )
        engine = AnnotationEngine(buffers, {FILE: [loaded]}, clock=clock)
        before = buffers.get_lines(FILE)
        buffers.set_text(FILE, SOURCE.replace("loadConfig() {", "loadSettings() {"))

        refreshed = engine.notify_change(
            FILE,
            DocumentChangeEvent(changes=[DocumentChange(4, 4, "Settings")]),
            recent_input=True,
            now=0.0,
            previous_lines=before,
        )

        assert refreshed == [loaded.id]
        assert loaded.content_snapshot == "function loadSettings() {"
        assert loaded.matched is True

    def test_load_resolves_annotations(self, buffers, clock):
        loaded = Annotation(
            file_path=FILE, stored_line=3, content_snapshot="function loadConfig() {", body="$loader"
        )
        engine = AnnotationEngine(buffers, {FILE: [loaded]}, clock=clock)

        assert loaded.matched is True
        assert loaded.resolved_line == 4
        assert engine.tag_index.declarations["loader"].line == 4
