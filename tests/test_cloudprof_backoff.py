import pytest
from hypothesis import given
from hypothesis import strategies as st

from cloudprof.cloudprof_backoff import BackoffState, RetryPolicy

attempts = st.integers(min_value=0, max_value=200)


class TestRetryPolicy:
    policy = RetryPolicy(base=1.0, max_delay=300.0, multiplier=2.0, jitter=(0.8, 1.2))

    @given(attempts)
    def test_delay_within_jitter_band(self, attempt: int) -> None:
        envelope = self.policy.envelope(attempt)
        delay = self.policy.next_delay(attempt)
        assert 0.8 * envelope <= delay <= 1.2 * envelope

    @given(attempts)
    def test_envelope_is_non_decreasing_and_capped(self, attempt: int) -> None:
        assert self.policy.envelope(attempt) <= self.policy.envelope(attempt + 1)
        assert self.policy.envelope(attempt) <= self.policy.max_delay

    def test_first_attempt_is_base_delay(self):
        assert self.policy.envelope(0) == 1.0
        assert 0.8 <= self.policy.next_delay(0) <= 1.2

    def test_huge_attempt_counts_hit_the_cap(self):
        assert self.policy.envelope(10_000) == 300.0

    def test_jitter_is_drawn_on_every_call(self):
        draws = iter([0.8, 1.2])
        policy = RetryPolicy(base=10.0, max_delay=100.0, uniform=lambda lo, hi: next(draws))
        assert policy.next_delay(0) == pytest.approx(8.0)
        assert policy.next_delay(0) == pytest.approx(12.0)


def test_record_failure_counts_and_reset_clears():
    policy = RetryPolicy(base=2.0, max_delay=100.0, uniform=lambda lo, hi: 1.0)
    state = BackoffState()
    assert policy.record_failure(state) == 2.0
    assert policy.record_failure(state) == 4.0
    assert state.attempt == 2
    assert policy.current_delay(state) == 8.0
    assert state.attempt == 2
    policy.reset(state)
    assert state.attempt == 0
    assert policy.current_delay(state) == 2.0


def test_retry_after_is_a_floor():
    policy = RetryPolicy(base=2.0, max_delay=100.0, uniform=lambda lo, hi: 1.0)
    state = BackoffState()
    assert policy.record_failure(state, retry_after=30.0) == 30.0
    assert policy.record_failure(state, retry_after=1.0) == 4.0


@pytest.mark.parametrize("retry_after", [400.0, 10_000_000.0, float("inf")])
def test_retry_after_floor_never_exceeds_the_longest_delay(retry_after):
    policy = RetryPolicy(base=60.0, max_delay=3600.0, jitter=(0.8, 1.2))
    state = BackoffState()
    delay = policy.record_failure(state, retry_after=retry_after)
    assert delay <= 3600.0 * 1.2
    assert delay >= min(retry_after, policy.longest_delay)


def test_count_failure_draws_no_jitter():
    draws = []

    def uniform(lo, hi):
        draws.append((lo, hi))
        return 1.0

    policy = RetryPolicy(base=2.0, max_delay=100.0, uniform=uniform)
    state = BackoffState()
    policy.count_failure(state)
    assert state.attempt == 1
    assert draws == []
    assert policy.current_delay(state) == 4.0
    assert len(draws) == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base": 0},
        {"base": 10, "max_delay": 5},
        {"multiplier": 0.5},
        {"jitter": (1.2, 0.8)},
        {"jitter": (0, 1)},
        {"max_attempts": 0},
    ],
)
def test_invalid_policies_are_rejected(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)
