from callscript.circuit_breaker import CircuitBreaker


class FakeMonotonic:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


class TestCircuitBreaker:
    def test_closed_until_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.should_try()
        assert not breaker.is_open

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3)
        for _ in range(3):
            breaker.record_failure()
        assert breaker.is_open
        assert not breaker.should_try()

    def test_half_open_after_cooldown(self):
        clock = FakeMonotonic()
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.t += 61
        assert breaker.should_try()

    def test_failed_trial_call_restarts_cooldown(self):
        clock = FakeMonotonic()
        breaker = CircuitBreaker(failure_threshold=2, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.t += 61
        breaker.record_failure()
        assert not breaker.should_try()

    def test_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()
        breaker.record_success()
        assert breaker.should_try()
        assert not breaker.is_open
