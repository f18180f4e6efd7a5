"""End-to-end messaging flows — several components talking through one messenger.

These tests exercise registration, broadcast, request/response, collection
requests, and the demo exchange working together.
"""

from __future__ import annotations

import asyncio
import gc

import pytest

from relaybus import (
    AsyncCollectionRequestMessage,
    AsyncRequestMessage,
    CollectionRequestMessage,
    Messenger,
    NoRegisteredHandlerError,
    PropertyChangedMessage,
    RequestMessage,
    ValueChangedMessage,
    WeakReferenceMessenger,
    receives,
)
from relaybus.cli.commands.demo import PingMessage, run_demo


class LoggedInUserRequest(RequestMessage[str]):
    pass


class OpenDocumentsRequest(CollectionRequestMessage[str]):
    pass


class FetchProfileRequest(AsyncRequestMessage[dict]):
    def __init__(self, user: str) -> None:
        self.user = user


class HealthCheck(AsyncCollectionRequestMessage[str]):
    pass


class Session:
    """Owns the current user and broadcasts changes to it."""

    def __init__(self, messenger: Messenger) -> None:
        self.messenger = messenger
        self._user = "anonymous"

    @property
    def user(self) -> str:
        return self._user

    @user.setter
    def user(self, value: str) -> None:
        old, self._user = self._user, value
        self.messenger.send(
            PropertyChangedMessage[str](
                sender=self, property_name="user", old_value=old, new_value=value
            )
        )

    @receives(LoggedInUserRequest)
    def on_user_request(self, message: LoggedInUserRequest) -> None:
        message.reply(self._user)


class Sidebar:
    def __init__(self) -> None:
        self.title = ""

    @receives(PropertyChangedMessage[str])
    def on_property_changed(self, message: PropertyChangedMessage[str]) -> None:
        if message.property_name == "user":
            self.title = f"Signed in as {message.new_value}"


class Editor:
    def __init__(self, *paths: str) -> None:
        self.paths = list(paths)

    @receives(OpenDocumentsRequest)
    def on_documents(self, message: OpenDocumentsRequest) -> None:
        for path in self.paths:
            message.reply(path)


class TestApplicationFlow:
    @pytest.fixture
    def messenger(self) -> Messenger:
        return WeakReferenceMessenger(error_policy="fail_fast")

    def test_property_change_reaches_views(self, messenger: Messenger):
        session = Session(messenger)
        sidebar = Sidebar()
        messenger.register_all(session)
        messenger.register_all(sidebar)

        session.user = "ada"
        assert sidebar.title == "Signed in as ada"
        assert messenger.request(LoggedInUserRequest()) == "ada"

    def test_collection_across_editors(self, messenger: Messenger):
        left, right = Editor("a.py", "b.py"), Editor("c.py")
        messenger.register_all(left)
        messenger.register_all(right)
        assert messenger.request_all(OpenDocumentsRequest()) == ["a.py", "b.py", "c.py"]

        del right
        gc.collect()
        assert messenger.request_all(OpenDocumentsRequest()) == ["a.py", "b.py"]

    def test_closing_the_session_leaves_requests_unanswered(self, messenger: Messenger):
        session = Session(messenger)
        messenger.register_all(session)
        messenger.unregister_all(session)
        with pytest.raises(NoRegisteredHandlerError):
            messenger.request(LoggedInUserRequest())

    def test_value_changed_per_channel(self, messenger: Messenger):
        class Gauge:
            def __init__(self) -> None:
                self.values: list[float] = []

        cpu, memory = Gauge(), Gauge()
        messenger.register(cpu, ValueChangedMessage[float], lambda r, m: r.values.append(m.value), "cpu")
        messenger.register(memory, ValueChangedMessage[float], lambda r, m: r.values.append(m.value), "mem")

        messenger.send(ValueChangedMessage[float](value=0.5), "cpu")
        messenger.send(ValueChangedMessage[float](value=0.9), "mem")
        messenger.send(ValueChangedMessage[float](value=0.1))
        assert cpu.values == [0.5]
        assert memory.values == [0.9]


class TestAsyncFlow:
    def test_profile_service_with_health_checks(self):
        messenger = Messenger(error_policy="fail_fast")

        class ProfileService:
            def __init__(self) -> None:
                self.store = {"ada": {"name": "Ada", "role": "admin"}}

            async def fetch(self, user: str) -> dict:
                await asyncio.sleep(0.01)
                return self.store[user]

        class Cache:
            async def ping(self) -> str:
                await asyncio.sleep(0.02)
                return "cache:ok"

        service, cache = ProfileService(), Cache()
        messenger.register(service, FetchProfileRequest, lambda r, m: m.reply(r.fetch(m.user)))

        async def report_service(recipient, message):
            await asyncio.sleep(0.03)
            message.reply("profiles:ok")

        messenger.register(service, HealthCheck, report_service)
        messenger.register(cache, HealthCheck, lambda r, m: m.reply(r.ping()))

        async def scenario():
            profile = await messenger.request(FetchProfileRequest("ada"))
            health = await messenger.request_all(HealthCheck())
            return profile, health

        profile, health = asyncio.run(scenario())
        assert profile == {"name": "Ada", "role": "admin"}
        assert health == ["profiles:ok", "cache:ok"]

    def test_concurrent_requests_resolve_independently(self):
        messenger = Messenger(error_policy="fail_fast")

        class Echo:
            pass

        async def echo(recipient, message):
            await asyncio.sleep(0.01 * len(message.user))
            message.reply({"user": message.user})

        echo_recipient = Echo()
        messenger.register(echo_recipient, FetchProfileRequest, echo)

        async def scenario():
            return await asyncio.gather(
                messenger.request(FetchProfileRequest("bob")),
                messenger.request(FetchProfileRequest("al")),
            )

        assert asyncio.run(scenario()) == [{"user": "bob"}, {"user": "al"}]


class TestDemoFlow:
    def test_run_demo_collects_replies_and_unregisters(self):
        messenger = WeakReferenceMessenger(error_policy="fail_fast")
        replies = asyncio.run(run_demo(messenger, count=3, interval=0, channel="pings"))
        assert len(replies) == 3
        assert all(reply.startswith("Hi Hello ") for reply in replies)
        assert messenger.get_stats().subscriptions == 0

    def test_ping_without_subscriber(self):
        messenger = Messenger(error_policy="fail_fast")

        async def scenario():
            await messenger.request(PingMessage("anyone?"))

        with pytest.raises(NoRegisteredHandlerError):
            asyncio.run(scenario())
