import threading

from mirror_sync.suppress import EchoSuppressor


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_entries_are_one_shot():
    s = EchoSuppressor(ttl_sec=10)
    s.mark("x")
    assert s.should_suppress("x")
    assert not s.should_suppress("x")
    assert not s.should_suppress("never-marked")


def test_entries_expire_after_ttl():
    clock = FakeClock()
    s = EchoSuppressor(ttl_sec=5, clock=clock)
    s.mark("x")
    s.mark("y")
    clock.now = 4.9
    assert s.pending() == 2
    assert s.should_suppress("x")
    clock.now = 5.0
    assert not s.should_suppress("y")
    assert s.pending() == 0


def test_remark_extends_expiry():
    clock = FakeClock()
    s = EchoSuppressor(ttl_sec=5, clock=clock)
    s.mark("x")
    clock.now = 4
    s.mark("x")
    clock.now = 8
    assert s.should_suppress("x")


def test_forget_drops_entry():
    s = EchoSuppressor()
    s.mark("x")
    s.forget("x")
    s.forget("x")
    assert not s.should_suppress("x")


def test_concurrent_consumers_take_each_entry_once():
    s = EchoSuppressor(ttl_sec=60)
    paths = [f"f{i}" for i in range(500)]
    for p in paths:
        s.mark(p)

    hits = []
    lock = threading.Lock()
    start = threading.Barrier(8)

    def consume():
        start.wait()
        mine = [p for p in paths if s.should_suppress(p)]
        with lock:
            hits.extend(mine)

    threads = [threading.Thread(target=consume) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(hits) == sorted(paths)
    assert s.pending() == 0
