# Overview: Pytest coverage for ordered steps with compensating actions.

import logging

import pytest

from shoppos.services.saga import Saga


class Boom(Exception):
    pass


def test_steps_run_in_order_and_return_results():
    calls = []
    with Saga("ordered") as saga:
        first = saga.step(lambda: calls.append("a") or 1, compensate=lambda r: calls.append(f"undo-a-{r}"))
        second = saga.step(lambda: calls.append("b") or 2)

    assert (first, second) == (1, 2)
    assert calls == ["a", "b"]
    assert saga.pending == 0


def test_failure_unwinds_completed_steps_newest_first():
    calls = []
    with pytest.raises(Boom):
        with Saga("lifo") as saga:
            saga.step(lambda: "one", compensate=lambda r: calls.append(f"undo {r}"))
            saga.step(lambda: "two", compensate=lambda r: calls.append(f"undo {r}"))
            saga.step(lambda: "three", compensate=lambda r: calls.append(f"undo {r}"))
            raise Boom()

    assert calls == ["undo three", "undo two", "undo one"]


def test_failing_step_is_not_compensated():
    calls = []

    def explode():
        raise Boom()

    with pytest.raises(Boom):
        with Saga("partial") as saga:
            saga.step(lambda: 1, compensate=lambda r: calls.append("undo 1"))
            saga.step(explode, compensate=lambda r: calls.append("undo explode"))

    assert calls == ["undo 1"]


def test_failing_compensation_does_not_stop_the_rest(caplog):
    calls = []

    def bad_undo(_):
        raise RuntimeError("cannot undo")

    with caplog.at_level(logging.ERROR):
        with pytest.raises(Boom):
            with Saga("noisy") as saga:
                saga.step(lambda: 1, compensate=lambda r: calls.append("undo 1"))
                saga.step(lambda: 2, compensate=bad_undo, label="second")
                raise Boom()

    # The original error propagates, not the compensation's
    assert calls == ["undo 1"]
    assert "compensation for 'second' failed" in caplog.text


def test_clean_exit_discards_compensations():
    calls = []
    with Saga("clean") as saga:
        saga.step(lambda: 1, compensate=lambda r: calls.append("undo"))
        assert saga.pending == 1

    saga.unwind()
    assert calls == []
