"""Assertion helpers for Result values."""

from typing import Any

from kungfu import Ok, Error


def ok(result: Any) -> Any:
    """Value of an Ok, failing the test on Error."""
    assert isinstance(result, Ok), f"expected Ok, got {result!r}"
    return result.value


def err(result: Any) -> Any:
    """Error value of an Error, failing the test on Ok."""
    assert isinstance(result, Error), f"expected Error, got {result!r}"
    return result.value
