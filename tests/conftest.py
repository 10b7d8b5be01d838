"""Shared fixtures: catalog schemas and a scripted model invoker."""

import pytest

from schemaguard.schema import classification_schema, receipt_schema, ticket_schema


class ScriptedInvoker:
    """Fake `invoke_model` that replays canned responses in order.

    Entries may be strings (returned) or exception instances (raised). The
    last entry repeats once the script runs out.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []
        self.timeouts = []

    def __call__(self, request, timeout):
        self.requests.append(request)
        self.timeouts.append(timeout)
        response = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def scripted():
    return ScriptedInvoker


@pytest.fixture
def receipt():
    return receipt_schema()


@pytest.fixture
def tickets():
    return ticket_schema()


@pytest.fixture
def classification():
    return classification_schema()
