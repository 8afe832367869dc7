# tests/test_timestamps.py

import threading
import time

from citronus_client.connection.timestamps import TimestampGenerator


def test_timestamps_are_epoch_milliseconds():
    generator = TimestampGenerator()
    ts = generator.generate()

    assert isinstance(ts, int)
    assert abs(ts - int(time.time() * 1000)) < 5000


def test_timestamps_strictly_increase_within_one_millisecond():
    generator = TimestampGenerator(clock=lambda: 1_700_000_000_000 * 1_000_000)

    values = [generator.generate() for _ in range(100)]

    assert values == list(range(1_700_000_000_000, 1_700_000_000_100))


def test_timestamps_unique_across_threads():
    generator = TimestampGenerator()
    values = []
    lock = threading.Lock()

    def worker():
        for _ in range(50):
            ts = generator.generate()
            with lock:
                values.append(ts)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(values)) == 200
