from shelfcast.core.errors import SessionError
from shelfcast.core.models import ProgressRecord
from shelfcast.remote.progress import ProgressFeed


class DummySource:
    def __init__(self, records, failing=()):
        self.records = records
        self.failing = set(failing)
        self.asked = []

    def get_progress(self, item_id):
        self.asked.append(item_id)
        if item_id in self.failing:
            raise SessionError("nope")
        return self.records.get(item_id)


def test_publish_keeps_newest_record_and_notifies():
    feed = ProgressFeed()
    seen = []
    unsubscribe = feed.subscribe(seen.append)

    feed.publish(ProgressRecord(item_id="a", current_time=10, last_update=2))
    feed.publish(ProgressRecord(item_id="a", current_time=5, last_update=1))
    feed.publish(ProgressRecord(item_id="", current_time=5, last_update=9))

    assert feed.get("a").current_time == 10
    assert [record.current_time for record in seen] == [10]

    unsubscribe()
    feed.publish(ProgressRecord(item_id="a", current_time=20, last_update=3))
    assert len(seen) == 1
    assert feed.items()["a"].current_time == 20


def test_failing_listener_does_not_block_others():
    feed = ProgressFeed()
    seen = []

    def broken(_record):
        raise RuntimeError("listener bug")

    feed.subscribe(broken)
    feed.subscribe(seen.append)
    feed.publish(ProgressRecord(item_id="a", current_time=1, last_update=1))
    assert len(seen) == 1


def test_refresh_pulls_known_items_and_skips_failures():
    source = DummySource(
        {"a": ProgressRecord(item_id="a", current_time=3, last_update=1), "c": None},
        failing={"b"},
    )
    feed = ProgressFeed()
    assert feed.refresh(source, ["a", "b", "c"]) == 1
    assert source.asked == ["a", "b", "c"]
    assert feed.get("a").current_time == 3
    assert feed.get("b") is None
