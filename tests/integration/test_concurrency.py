"""Concurrency tests — registry mutations racing with dispatch across threads."""

from __future__ import annotations

import threading

import pytest

from relaybus.core.errors import DuplicateRegistrationError
from relaybus.core.messenger import Messenger
from relaybus.core.recipients import ReferencePolicy
from relaybus.models.messages import CollectionRequestMessage, RequestMessage


class Signal:
    pass


class Census(CollectionRequestMessage[int]):
    pass


class Claim(RequestMessage[int]):
    pass


class Worker:
    def __init__(self, n: int) -> None:
        self.n = n
        self.hits = 0
        self._lock = threading.Lock()

    def on_signal(self, message: Signal) -> None:
        with self._lock:
            self.hits += 1


def _run_threads(targets: list) -> list[BaseException]:
    errors: list[BaseException] = []
    barrier = threading.Barrier(len(targets))

    def wrap(fn):
        def runner() -> None:
            barrier.wait()
            try:
                fn()
            except BaseException as exc:
                errors.append(exc)

        return runner

    threads = [threading.Thread(target=wrap(fn)) for fn in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return errors


@pytest.mark.parametrize("policy", [ReferencePolicy.STRONG, ReferencePolicy.WEAK])
class TestConcurrentAccess:
    def test_register_unregister_while_sending(self, policy: ReferencePolicy):
        messenger = Messenger(policy, error_policy="fail_fast")
        stable = [Worker(n) for n in range(4)]
        for w in stable:
            messenger.register(w, Signal, Worker.on_signal)

        def churn(offset: int):
            def fn() -> None:
                for i in range(200):
                    w = Worker(offset + i)
                    messenger.register(w, Signal, Worker.on_signal, "churn")
                    messenger.register(w, Signal, Worker.on_signal)
                    messenger.unregister(w)

            return fn

        def sender() -> None:
            for _ in range(200):
                messenger.send(Signal())
                messenger.send(Signal(), "churn")

        errors = _run_threads([churn(0), churn(1000), sender, sender])
        assert errors == []
        assert all(w.hits == 400 for w in stable)
        assert messenger.get_stats().subscriptions == len(stable)

    def test_collection_sees_each_stable_handler_once(self, policy: ReferencePolicy):
        messenger = Messenger(policy, error_policy="fail_fast")
        workers = [Worker(n) for n in range(5)]
        for w in workers:
            messenger.register(w, Census, lambda r, m: m.reply(r.n))

        results: list[list[int]] = []
        results_lock = threading.Lock()

        def ask() -> None:
            for _ in range(100):
                answer = messenger.request_all(Census())
                with results_lock:
                    results.append(answer)

        errors = _run_threads([ask, ask, ask])
        assert errors == []
        assert len(results) == 300
        assert all(answer == [0, 1, 2, 3, 4] for answer in results)

    def test_concurrent_duplicate_registration_admits_one(self, policy: ReferencePolicy):
        messenger = Messenger(policy, error_policy="fail_fast")
        worker = Worker(0)
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def attempt() -> None:
            try:
                messenger.register(worker, Signal, Worker.on_signal)
                result = "ok"
            except DuplicateRegistrationError:
                result = "duplicate"
            with outcomes_lock:
                outcomes.append(result)

        errors = _run_threads([attempt] * 8)
        assert errors == []
        assert sorted(outcomes) == ["duplicate"] * 7 + ["ok"]

    def test_request_from_many_threads(self, policy: ReferencePolicy):
        messenger = Messenger(policy, error_policy="fail_fast")
        worker = Worker(7)
        messenger.register(worker, Claim, lambda r, m: m.reply(r.n))
        values: list[int] = []
        values_lock = threading.Lock()

        def ask() -> None:
            for _ in range(100):
                value = messenger.request(Claim())
                with values_lock:
                    values.append(value)

        errors = _run_threads([ask] * 4)
        assert errors == []
        assert values == [7] * 400
