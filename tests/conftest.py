import os
import random

import pytest

from price_pulse.utils.asyncio import set_thread_limit


@pytest.fixture(autouse=True)
def _seed_everything():
    random.seed(0)
    os.environ.setdefault("PYTHONHASHSEED", "0")


@pytest.fixture(autouse=True)
def _reset_thread_limit():
    yield
    set_thread_limit(4)
