from __future__ import annotations

import datetime
from collections.abc import Callable

# Epoch seconds, matching the integer timestamps stored everywhere else.
Clock = Callable[[], int]


def utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())
