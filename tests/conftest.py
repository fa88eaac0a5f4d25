"""Pytest configuration for the runbook engine."""
import os

import pytest

from runbook.base.config import RunbookConfig, StorageConfig, set_config
from runbook.remote.dispatch import RemoteDispatcher
from runbook.remote.transport import CommandResult


def pytest_configure():
    # Never prompt before steps unless a test asks for it
    os.environ.setdefault("RUNBOOK_PARANOID", "false")


class RecordingToolbox:
    """Toolbox that records output and answers prompts from queues."""

    def __init__(self):
        self.outputs = []
        self.warnings = []
        self.prompts = []
        self.answers = []
        self.confirmations = []

    def output(self, message):
        self.outputs.append(message)

    def ask(self, prompt, default=None, echo=True):
        self.prompts.append(prompt)
        if self.answers:
            return self.answers.pop(0)
        return default

    def confirm(self, prompt):
        self.prompts.append(prompt)
        if self.confirmations:
            return self.confirmations.pop(0)
        return True

    def warn(self, message):
        self.warnings.append(message)


class FakeTransport:
    """
    Records every call. ``responder(host, command)`` decides the result and
    may return an exception instance to raise it.
    """

    def __init__(self):
        self.calls = []
        self.uploads = []
        self.downloads = []
        self.responder = lambda host, command: CommandResult(host, f"out from {host}\n", "", 0)

    async def run(self, host, command):
        self.calls.append((host, command))
        result = self.responder(host, command)
        if isinstance(result, BaseException):
            raise result
        return result

    async def upload(self, host, local_path, remote_path):
        self.uploads.append((host, local_path, remote_path))

    async def download(self, host, remote_path, local_path):
        self.downloads.append((host, remote_path, local_path))


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def config(tmp_path):
    cfg = RunbookConfig(storage=StorageConfig(state_dir=tmp_path), paranoid=False)
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def toolbox():
    return RecordingToolbox()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def dispatcher(transport, sleep):
    return RemoteDispatcher(transport, sleep=sleep)
