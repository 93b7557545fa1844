"""
Condition verifiers for payment-, signature- and usage-based conditions.

Interface expected by the condition engine:
    async verify(parameters: dict) -> bool
"""

import inspect
from typing import Any, Callable, Dict


class StaticVerifier:
    """Always answers with the same result."""

    def __init__(self, result: bool):
        self.result = result
        self.calls = 0

    async def verify(self, parameters: Dict[str, Any]) -> bool:
        self.calls += 1
        return self.result


class CallbackVerifier:
    """
    Delegates to a host callable ``fn(parameters) -> bool``. The callable
    may be a plain function or a coroutine function.
    """

    def __init__(self, fn: Callable[[Dict[str, Any]], Any]):
        self.fn = fn

    async def verify(self, parameters: Dict[str, Any]) -> bool:
        result = self.fn(parameters)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
