from __future__ import annotations

import time
from typing import Callable


def wait_until(
    check: Callable[[], bool],
    *,
    attempts: int,
    initial_delay: float,
    factor: float = 2.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Poll `check` until it returns True, backing off exponentially between tries.

    An exception from `check` counts as "not yet". Returns False once `attempts`
    checks have failed; never raises on exhaustion.
    """
    delay = initial_delay
    for attempt in range(1, attempts + 1):
        try:
            if check():
                return True
        except Exception:  # noqa: BLE001
            pass
        if attempt < attempts:
            sleep(min(delay, max_delay))
            delay *= factor
    return False
