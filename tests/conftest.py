import pathlib

import pytest

EXAMPLE_POLICY = pathlib.Path(__file__).resolve().parent.parent / "examples" / "policy.yaml"


class FakeTime:
    def __init__(self, start: float = 1_000.0) -> None:
        self._now = start

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def time(self) -> float:
        return self._now


@pytest.fixture
def clock() -> FakeTime:
    return FakeTime()


@pytest.fixture
def example_policy() -> pathlib.Path:
    return EXAMPLE_POLICY
