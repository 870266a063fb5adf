import threading

import pytest

from engine.collector import ResultCollector
from engine.errors import DuplicateIndexError
from stubs import make_outcome


def test_snapshot_is_in_index_order_regardless_of_record_order():
    c = ResultCollector(total=4)
    for i in (2, 0, 3, 1):
        c.record(make_outcome(url=f"http://t{i}.test", index=i))

    snap = c.snapshot()
    assert [o.index for o in snap] == [0, 1, 2, 3]
    assert [o.url for o in snap] == [f"http://t{i}.test" for i in range(4)]


def test_snapshot_allows_gaps():
    c = ResultCollector(total=5)
    c.record(make_outcome(index=4))
    c.record(make_outcome(index=1))

    assert [o.index for o in c.snapshot()] == [1, 4]
    assert len(c) == 2
    assert 4 in c and 0 not in c


def test_duplicate_index_is_rejected():
    c = ResultCollector(total=2)
    first = make_outcome(url="http://first.test", index=0)
    c.record(first)

    with pytest.raises(DuplicateIndexError) as exc:
        c.record(make_outcome(url="http://second.test", index=0))

    assert exc.value.index == 0
    assert c.snapshot() == [first]


@pytest.mark.parametrize("index", [-1, 3, 10])
def test_index_out_of_range_is_rejected(index):
    c = ResultCollector(total=3)
    with pytest.raises(ValueError):
        c.record(make_outcome(index=index))


def test_snapshot_returns_a_copy():
    c = ResultCollector()
    c.record(make_outcome(index=0))
    snap = c.snapshot()
    snap.clear()

    assert len(c.snapshot()) == 1


def test_concurrent_record_and_snapshot():
    total = 400
    c = ResultCollector(total=total)
    stop = threading.Event()
    bad = []

    def reader():
        while not stop.is_set():
            snap = c.snapshot()
            idx = [o.index for o in snap]
            if idx != sorted(idx) or len(set(idx)) != len(idx):
                bad.append(idx)
            for o in snap:
                if o.url != f"http://t{o.index}.test":
                    bad.append(o)

    def writer(start):
        for i in range(start, total, 4):
            c.record(make_outcome(url=f"http://t{i}.test", index=i))

    r = threading.Thread(target=reader)
    r.start()
    writers = [threading.Thread(target=writer, args=(k,)) for k in range(4)]
    for w in writers:
        w.start()
    for w in writers:
        w.join()
    stop.set()
    r.join()

    assert not bad
    assert [o.index for o in c.snapshot()] == list(range(total))
