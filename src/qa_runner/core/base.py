import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional


class StepActionProvider(ABC):
    """Resolves a step's bound implementation and runs it"""

    @abstractmethod
    def resolve(self, keyword: str, step_text: str) -> Optional[Any]:
        """Return the definition bound to ``keyword step_text`` or None.

        Implementations raise AmbiguousStepError when several definitions match.
        """
        pass

    def arguments(self, definition: Any, step_text: str) -> List[str]:
        """Extract raw argument strings from the step text"""
        match = definition.match(step_text)
        if not match:
            return []
        return [group for group in match.groups() if group is not None]

    @abstractmethod
    async def invoke(self, definition: Any, args: List[Any], context: Any) -> Any:
        """Run the definition to completion or failure"""
        pass


class ResourceContext(ABC):
    """Supplies and cleans up the resources a scenario needs"""

    @abstractmethod
    async def acquire(self) -> Any:
        """Acquire the resources and return them"""
        pass

    @abstractmethod
    async def release(self) -> None:
        """Release everything acquire() handed out"""
        pass

    async def screenshot(self, name: str) -> Optional[str]:
        """Capture a screenshot, returning its path when supported"""
        return None


class NullResourceContext(ResourceContext):
    """Resource context for runs that need no external resources"""

    async def acquire(self) -> Any:
        return None

    async def release(self) -> None:
        return None


class ReportingSink:
    """Receives finished results. Every callback is a no-op by default."""

    def step_finished(self, result: Any) -> None:
        pass

    def scenario_finished(self, result: Any) -> None:
        pass

    def feature_finished(self, result: Any) -> None:
        pass

    def hook_statistics(self, statistics: Dict[str, Any]) -> None:
        pass


async def run_callable(function: Callable, *args: Any) -> Any:
    """
    Call a sync or async function and await the result when needed.

    Plain functions run in a worker thread so a timeout around the call can
    fire and other scenarios keep running while they block.
    """
    if inspect.iscoroutinefunction(function):
        return await function(*args)

    result = await asyncio.to_thread(function, *args)
    if inspect.isawaitable(result):
        result = await result
    return result
