"""Log-domain arithmetic on float32 ranks.

Ranks are kept as natural logs of linear mass so that long sums of tiny
contributions do not underflow. All results are rounded to float32, which is
what the record files store.
"""
import math

import numpy as np

NEG_INF = float('-inf')


def to_float32(value):
    """Round a Python float to the nearest float32 and give it back as a
    Python float. ``-inf`` and ``inf`` pass through unchanged."""
    return float(np.float32(value))


def sum_log_probs(a, b):
    """Add two log-domain values: ``log(exp(a) + exp(b))``.

    ``-inf`` is the identity, so an accumulator can start at ``NEG_INF``.
    """
    if a == NEG_INF:
        return b
    if b == NEG_INF:
        return a

    if a < b:
        return to_float32(b + math.log1p(math.exp(a - b)))
    return to_float32(a + math.log1p(math.exp(b - a)))


def sum_all_log_probs(values, start=NEG_INF):
    """Fold :py:func:`sum_log_probs` over *values*, left to right."""
    total = start
    for value in values:
        total = sum_log_probs(total, value)
    return total
