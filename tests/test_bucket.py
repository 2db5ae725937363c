"""Tests for the continuous-refill token bucket."""

import random
import threading

import pytest

from fakes import FakeClock

from bucketguard.bucket import TokenBucket


@pytest.fixture
def bucket(clock):
    # 3 tokens per 1000 ms
    return TokenBucket(capacity=3, refill_rate=3 / 1000, clock=clock)


class TestConsume:
    def test_starts_full(self, bucket):
        assert bucket.tokens == 3.0
        assert bucket.get_tokens() == 3.0

    def test_drains_to_zero(self, bucket):
        assert bucket.consume() is True
        assert bucket.consume() is True
        assert bucket.consume() is True
        assert bucket.consume() is False
        assert bucket.tokens == 0.0

    def test_denied_consume_leaves_tokens(self, bucket):
        bucket.consume(2)
        assert bucket.consume(2) is False
        assert bucket.get_tokens() == 1.0

    def test_consume_many(self, bucket):
        assert bucket.consume(3) is True
        assert bucket.get_tokens() == 0.0

    def test_take_reports_tokens_left(self, bucket):
        assert bucket.take(2) == (True, 1.0)
        assert bucket.take(2) == (False, 1.0)


class TestRefill:
    def test_no_refill_below_one_token(self, bucket, clock):
        bucket.consume(3)
        clock.advance(333)  # 0.999 tokens
        assert bucket.get_tokens() == 0.0

    def test_refills_whole_tokens(self, bucket, clock):
        bucket.consume(3)
        clock.advance(334)
        assert bucket.get_tokens() == 1.0
        clock.advance(700)
        assert bucket.get_tokens() == 3.0

    def test_partial_progress_not_lost_on_zero_add(self, bucket, clock):
        bucket.consume(3)
        clock.advance(200)
        bucket.get_tokens()  # adds nothing, keeps last_refill
        clock.advance(200)
        assert bucket.get_tokens() == 1.0

    def test_capped_at_capacity(self, bucket, clock):
        bucket.consume()
        clock.advance(1_000_000)
        assert bucket.get_tokens() == 3.0

    def test_refill_monotonic(self, bucket, clock):
        bucket.consume(3)
        previous = bucket.get_tokens()
        for _ in range(50):
            clock.advance(37)
            current = bucket.get_tokens()
            assert current >= previous
            assert current <= bucket.capacity
            previous = current


class TestTimeToNextToken:
    def test_zero_when_available(self, bucket):
        assert bucket.get_time_to_next_token() == 0

    def test_one_token_period_when_empty(self, bucket):
        bucket.consume(3)
        assert bucket.get_time_to_next_token() == 334

    def test_waiting_that_long_yields_a_token(self, bucket, clock):
        bucket.consume(3)
        clock.advance(bucket.get_time_to_next_token())
        assert bucket.consume() is True

    def test_exact_period_not_rounded_up(self, clock):
        b = TokenBucket(capacity=100, refill_rate=100 / 60_000, clock=clock)
        b.consume(100)
        assert b.get_time_to_next_token() == 600

    def test_token_interval(self, bucket):
        assert bucket.token_interval == 334


class TestInvariant:
    def test_tokens_stay_in_range(self):
        clock = FakeClock()
        rng = random.Random(1234)
        b = TokenBucket(capacity=5, refill_rate=5 / 2000, clock=clock)
        for _ in range(2000):
            if rng.random() < 0.6:
                b.consume(rng.randint(1, 3))
            else:
                clock.advance(rng.uniform(0, 900))
            assert 0 <= b.get_tokens() <= b.capacity


class TestConcurrency:
    def test_single_token_not_double_spent(self, clock):
        for _ in range(20):
            b = TokenBucket(capacity=1, refill_rate=1 / 60_000, clock=clock)
            barrier = threading.Barrier(8)
            results = []
            lock = threading.Lock()

            def worker():
                barrier.wait()
                ok = b.consume()
                with lock:
                    results.append(ok)

            threads = [threading.Thread(target=worker) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert results.count(True) == 1
