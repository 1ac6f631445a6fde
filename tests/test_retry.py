import pytest

from goldshop.retry import RetryExhausted, retry_fixed


def test_fixed_schedule_and_bound():
    slept, calls = [], []

    def always_fails():
        calls.append(1)
        raise RuntimeError("nope")

    with pytest.raises(RetryExhausted) as exc:
        retry_fixed(always_fails, (0.5, 1.0, 2.0), sleep=slept.append)
    assert len(calls) == 3
    assert slept == [0.5, 1.0, 2.0]
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_error, RuntimeError)


def test_returns_first_success():
    results = iter([RuntimeError("a"), "ok"])

    def flaky():
        r = next(results)
        if isinstance(r, Exception):
            raise r
        return r

    assert retry_fixed(flaky, (0, 0, 0), sleep=lambda s: None) == "ok"


def test_unlisted_errors_propagate():
    def bad():
        raise KeyError("x")
    with pytest.raises(KeyError):
        retry_fixed(bad, (0, 0), retry_on=(ValueError,), sleep=lambda s: None)


def test_empty_schedule_is_rejected():
    with pytest.raises(ValueError):
        retry_fixed(lambda: 1, ())
