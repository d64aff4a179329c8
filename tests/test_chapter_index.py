from shelfcast.core.chapters import ChapterIndex
from shelfcast.core.models import Chapter


def _chapters(*bounds):
    return [Chapter(id=i, start=start, end=end, title=f"c{i}") for i, (start, end) in enumerate(bounds)]


def test_locate_returns_the_chapter_whose_interval_holds_t():
    index = ChapterIndex(_chapters((0, 100), (100, 250), (250, 400)), 400)
    for t in [0.0, 0.5, 99.99, 100.0, 180.0, 249.9, 250.0, 399.0]:
        position = index.locate(t)
        chapter = index[position]
        upper = index.end_of(position)
        assert chapter.start <= t < upper


def test_locate_closes_last_chapter_at_duration():
    index = ChapterIndex(_chapters((0, 100), (100, 200)), 200)
    assert index.locate(200.0) == 1


def test_locate_outside_range_returns_none():
    index = ChapterIndex(_chapters((0, 100), (100, 200)), 200)
    assert index.locate(-0.1) is None
    assert index.locate(200.5) is None
    assert ChapterIndex([], 100).locate(10) is None


def test_locate_tolerates_end_slightly_past_duration():
    index = ChapterIndex(_chapters((0, 100), (100, 200.02)), 200)
    assert index.locate(200.01) == 1


def test_chapters_are_sorted_on_construction():
    index = ChapterIndex(_chapters((100, 200), (0, 100)), 200)
    assert [chapter.start for chapter in index.chapters] == [0, 100]
    assert index.chapter_at(50).start == 0


def test_boundary_after_counts_from_current_chapter():
    index = ChapterIndex(_chapters((0, 100), (100, 200), (200, 300), (300, 400), (400, 500)), 500)
    assert index.boundary_after(210, 0) == 300
    assert index.boundary_after(210, 1) == 400
    assert index.boundary_after(210, 10) == 500
    assert index.boundary_after(600, 0) is None


def test_lead_in_before_first_chapter_has_no_chapter():
    index = ChapterIndex(_chapters((30, 100), (100, 200)), 200)
    assert index.locate(0.0) is None
    assert index.locate(29.9) is None
    assert index.chapter_at(10.0) is None
    assert index.boundary_after(10.0, 1) is None
    assert index.locate(30.0) == 0
