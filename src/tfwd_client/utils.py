"""
Utility helpers for the forwarder client.
"""

import random


def calculate_retry_delay(
    attempt: int, base_delay_ms: int = 500, max_delay_ms: int = 5000, jitter: bool = True
) -> float:
    """
    Calculate the wait before re-sending an ingestion request.

    Args:
        attempt: Failed attempts so far, minus one (0 for the first retry)
        base_delay_ms: Delay before the first retry
        max_delay_ms: Upper bound before jitter
        jitter: Spread retries of many clients by ±25%

    Returns:
        Delay in seconds
    """
    delay_ms = min(base_delay_ms * (2**attempt), max_delay_ms)

    if jitter:
        spread = delay_ms * 0.25
        delay_ms += random.uniform(-spread, spread)

    return max(0.0, delay_ms / 1000.0)
