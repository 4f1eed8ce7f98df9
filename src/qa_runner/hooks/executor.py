import asyncio
import logging
import traceback
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from ..core.base import run_callable
from ..core.exceptions import HookError
from ..core.results import ErrorType, ExecutionError, HookResult, StepStatus
from .models import Hook, HookStats, HookType
from .registry import HookRegistry

logger = logging.getLogger(__name__)

DEFAULT_HOOK_TIMEOUT = 30000

# Hook ids running in the current task; copied into child tasks, so
# parallel workers never see each other's hooks
_executing: ContextVar[FrozenSet[str]] = ContextVar('qa_runner_executing_hooks', default=frozenset())


def executing_hooks() -> FrozenSet[str]:
    """Ids of hooks currently running in this task"""
    return _executing.get()


class HookExecutor:
    """Runs the hooks for a lifecycle point one after another"""

    def __init__(self, registry: HookRegistry, default_timeout: int = DEFAULT_HOOK_TIMEOUT):
        self.registry = registry
        self.default_timeout = default_timeout
        self._stats: Dict[str, HookStats] = {}

    async def execute_hooks(
            self,
            hook_type: Union[HookType, str],
            context: Any,
            tags: Optional[Iterable[str]] = None,
            reverse: bool = False
    ) -> List[HookResult]:
        """
        Run every applicable hook of ``hook_type`` sequentially

        Args:
            hook_type: Lifecycle point
            context: Passed to each hook function
            tags: Scenario plus feature tags used for filtering
            reverse: Run in reverse order (teardown of feature hooks)

        Returns:
            One result per hook that ran
        """
        hook_type = HookType(hook_type)
        hooks = self.registry.get_hooks(hook_type, tags)
        if reverse:
            hooks = list(reversed(hooks))

        results = []
        for hook in hooks:
            result = await self.execute_hook(hook, context)
            results.append(result)

            if result.status is StepStatus.FAILED and not self._should_continue_after_failure(hook):
                logger.warning(f"Stopping {hook_type.value} hooks after failure in '{hook.name}'")
                break

        return results

    @staticmethod
    def _should_continue_after_failure(hook: Hook) -> bool:
        return hook.type.is_teardown or hook.always_run

    async def execute_hook(self, hook: Hook, context: Any) -> HookResult:
        """Run one hook under its timeout"""
        result = HookResult(
            hook_name=hook.name,
            hook_type=hook.type.value,
            status=StepStatus.RUNNING,
            start_time=datetime.now(),
        )
        error_context = {'hook': hook.id}

        running = _executing.get()
        if hook.id in running:
            message = f"Circular hook execution detected: {hook.id}"
            logger.error(message)
            result.exception = HookError(message, hook=hook, context=error_context)
            result.error = ExecutionError(ErrorType.SYSTEM, message, context=error_context)
            result.status = StepStatus.FAILED
            result.end_time = datetime.now()
            return result

        timeout = hook.timeout if hook.timeout is not None else self.default_timeout
        token = _executing.set(running | {hook.id})
        try:
            logger.debug(f"Executing {hook.type.value} hook: {hook.name}")
            await asyncio.wait_for(
                run_callable(hook.function, context),
                timeout=timeout / 1000 if timeout else None,
            )
            result.status = StepStatus.PASSED

        except asyncio.TimeoutError as e:
            message = f"Hook '{hook.name}' timed out after {timeout}ms"
            logger.error(message)
            result.exception = HookError(message, hook=hook, context=error_context, cause=e)
            result.error = ExecutionError(ErrorType.TIMEOUT, message, context=error_context)
            result.status = StepStatus.FAILED

        except Exception as e:
            message = f"Hook '{hook.name}' failed: {e}"
            logger.error(message)
            result.exception = HookError(message, hook=hook, context=error_context, cause=e)
            error_type = ErrorType.ASSERTION if isinstance(e, AssertionError) else ErrorType.EXECUTION
            result.error = ExecutionError(
                error_type,
                message,
                stack="".join(traceback.format_exception(type(e), e, e.__traceback__)),
                context=error_context,
            )
            result.status = StepStatus.FAILED

        finally:
            _executing.reset(token)
            result.end_time = datetime.now()

        self._record(hook, result)
        return result

    def _record(self, hook: Hook, result: HookResult) -> None:
        stats = self._stats.setdefault(hook.id, HookStats())
        stats.record(result.duration, result.status is StepStatus.PASSED, result.end_time.isoformat())

    def get_statistics(self) -> Dict[str, Dict[str, Any]]:
        """Per hook id statistics"""
        return {hook_id: stats.to_dict() for hook_id, stats in self._stats.items()}

    def get_execution_report(self) -> Dict[str, Any]:
        executions = sum(stats.executions for stats in self._stats.values())
        successes = sum(stats.success_count for stats in self._stats.values())
        total_duration = sum(stats.total_duration for stats in self._stats.values())
        return {
            'total_executions': executions,
            'successful': successes,
            'failed': executions - successes,
            'success_rate': (successes / executions * 100) if executions else 0.0,
            'average_duration': total_duration / executions if executions else 0.0,
            'hooks': self.get_statistics(),
        }

    def reset_statistics(self) -> None:
        self._stats.clear()


def first_failure(results: Iterable[HookResult]) -> Optional[HookResult]:
    """First failed result in a hook chain, if any"""
    return next((result for result in results if result.status is StepStatus.FAILED), None)
