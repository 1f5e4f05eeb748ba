from docfill.services.annotations import AnnotationEmitter, RenderStats
from docfill.services.paths import Path
from docfill.services.resolver import Absent, Resolved


def test_emitter_counts_resolved_and_missing():
    emitter = AnnotationEmitter()
    a = emitter.emit(Resolved("Ana", Path.parse("user.name")))
    b = emitter.emit(Absent(Path.parse("user.email")))
    assert a.imported and a.display == "Ana"
    assert not b.imported and b.display == "[[user.email]]"
    assert emitter.stats.to_dict() == {"total_fields": 2, "resolved_fields": 1, "missing_fields": 1}


def test_format_errors_count_as_missing():
    emitter = AnnotationEmitter()
    marker = emitter.error("price", "currency", "[[Invalid amount]]")
    assert marker.error == "currency"
    assert emitter.stats.missing_fields == 1


def test_rollback_forgets_markers_since_checkpoint():
    stats = RenderStats()
    emitter = AnnotationEmitter(stats)
    emitter.emit(Resolved("x", Path.parse("a")))
    mark = stats.checkpoint()
    emitter.emit(Resolved("y", Path.parse("b")))
    emitter.missing("c")
    stats.rollback(mark)
    assert stats.to_dict() == {"total_fields": 1, "resolved_fields": 1, "missing_fields": 0}
    assert [str(m.path) for m in stats.markers] == ["a"]


def test_discard_removes_exactly_that_marker():
    emitter = AnnotationEmitter()
    first = emitter.emit(Resolved("1", Path.parse("a")))
    second = emitter.emit(Resolved("1", Path.parse("a")))
    assert emitter.stats.discard(second)
    assert emitter.stats.markers == [first]
    assert not emitter.stats.discard(second)
    assert emitter.stats.total_fields == 1
