from __future__ import annotations

import pytest

from data_designer_prose_polisher.settings import RoleBinding


class ScriptedGenerator:
    """Returns queued responses in order; a queued exception is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[str] = []

    async def generate(self, instruction: str) -> str:
        self.calls.append(instruction)
        if not self.responses:
            raise AssertionError("generator called more times than scripted")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingBinder:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.bound: list[RoleBinding] = []
        self.releases = 0

    async def bind(self, binding: RoleBinding) -> bool:
        self.bound.append(binding)
        return self.succeed

    async def release(self) -> None:
        self.releases += 1


class RecordingNotifier:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def notify(self, level: str, message: str) -> None:
        self.messages.append((level, message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.messages]


class RecordingPersister:
    def __init__(self):
        self.patches: list[dict] = []

    def persist(self, patch: dict) -> None:
        self.patches.append(patch)


@pytest.fixture
def binder():
    return RecordingBinder()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def persister():
    return RecordingPersister()
