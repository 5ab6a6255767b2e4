"""
Helpers for validating metric value changes during tests.
"""

from contextlib import contextmanager


@contextmanager
def metric_delta(metric, expected_delta=1):
    """
    Context manager to validate counter changes.

    Usage:
        with metric_delta(METRICS["ingest_outcomes"].labels(outcome="inserted")):
            # Code that should increment the counter by 1
            ...
    """
    if hasattr(metric, "_value"):
        initial_value = metric._value.get()
    else:
        raise ValueError(f"Metric {metric} doesn't have a _value attribute")

    yield

    final_value = metric._value.get()
    actual_delta = final_value - initial_value

    if actual_delta != expected_delta:
        raise AssertionError(
            f"Expected metric to change by {expected_delta}, "
            f"but it changed by {actual_delta} "
            f"(from {initial_value} to {final_value})"
        )
