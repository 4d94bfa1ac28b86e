from __future__ import annotations

import pytest

from fakes import FakeDirectory, FakeSource, FakeStream, log_lines, running, stopped


@pytest.fixture
def abc_runtime() -> tuple[FakeDirectory, FakeSource]:
    """A completes with ten lines, B is stopped, C never ends its stream."""
    directory = FakeDirectory([running("a" * 64, "alpha"), stopped("b" * 64, "bravo"), running("c" * 64, "charlie")])
    source = FakeSource(
        {
            "a" * 64: FakeStream(log_lines(10)),
            "b" * 64: FakeStream(log_lines(3)),
            "c" * 64: FakeStream(log_lines(2), block_forever=True),
        }
    )
    return directory, source
