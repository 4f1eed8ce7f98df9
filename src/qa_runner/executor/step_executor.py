import re
import json
import asyncio
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from ..core.base import ReportingSink, ResourceContext, StepActionProvider
from ..core.config import RunnerConfig
from ..core.exceptions import AmbiguousStepError, StepPending, StepSkipped
from ..core.results import ErrorType, ExecutionError, StepResult, StepStatus
from ..gherkin.keywords import CONJUNCTION_STEP_KEYWORDS, PRIMARY_STEP_KEYWORDS
from ..gherkin.models import Step
from ..hooks.executor import HookExecutor, first_failure
from ..hooks.models import HookType

logger = logging.getLogger(__name__)

INTEGER = re.compile(r'^-?\d+$')
FLOAT = re.compile(r'^-?\d+\.\d+$')
NULL_VALUES = ('null', 'none', 'undefined')


def coerce_argument(value: Any) -> Any:
    """
    Convert a captured step argument to the most specific type.

    Tried in order: integer, float, boolean, null, JSON object or array,
    quoted string. Anything else stays a raw string.
    """
    if not isinstance(value, str):
        return value

    text = value.strip()
    if INTEGER.match(text):
        return int(text)
    if FLOAT.match(text):
        return float(text)
    if text.lower() == 'true':
        return True
    if text.lower() == 'false':
        return False
    if text.lower() in NULL_VALUES:
        return None
    if text.startswith(('{', '[')):
        try:
            return json.loads(text)
        except ValueError:
            pass
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        return text[1:-1]
    return value


class StepExecutor:
    """Resolves and runs one step through the step action provider"""

    def __init__(
            self,
            provider: StepActionProvider,
            hook_executor: Optional[HookExecutor] = None,
            config: Optional[RunnerConfig] = None,
            sink: Optional[ReportingSink] = None
    ):
        self.provider = provider
        self.hook_executor = hook_executor
        self.config = config or RunnerConfig()
        self.sink = sink or ReportingSink()

    def resolve(self, step: Step) -> Any:
        """
        Find the definition for a step.

        And, But and * fall back to Given, When and Then when nothing matches
        their own keyword.
        """
        definition = self.provider.resolve(step.keyword, step.text)
        if definition is not None or step.keyword not in CONJUNCTION_STEP_KEYWORDS:
            return definition

        for keyword in PRIMARY_STEP_KEYWORDS:
            definition = self.provider.resolve(keyword, step.text)
            if definition is not None:
                return definition
        return None

    def build_arguments(self, definition: Any, step: Step) -> List[Any]:
        args = [coerce_argument(arg) for arg in self.provider.arguments(definition, step.text)]
        if step.data_table is not None:
            args.append(step.data_table)
        elif step.doc_string is not None:
            args.append(step.doc_string.content)
        return args

    async def execute(
            self,
            step: Step,
            context: Any,
            resource_context: Optional[ResourceContext] = None,
            tags: Optional[Iterable[str]] = None
    ) -> StepResult:
        """
        Execute a single step

        Args:
            step: Step to run
            context: Scenario context passed to the step function
            resource_context: Asked for screenshots, if any
            tags: Scenario plus feature tags for step hook filtering

        Returns:
            StepResult. Failures never propagate as exceptions.
        """
        result = StepResult(
            keyword=step.keyword,
            text=step.text,
            status=StepStatus.RUNNING,
            line=step.line,
            start_time=datetime.now(),
        )
        if hasattr(context, 'current_step'):
            context.current_step = step
        tags = list(tags or [])

        if self.hook_executor is not None:
            before = await self.hook_executor.execute_hooks(HookType.BEFORE_STEP, context, tags)
            result.hook_results.extend(before)
            failed_hook = first_failure(before)
            if failed_hook is not None:
                result.finish(StepStatus.FAILED, ExecutionError(
                    ErrorType.SETUP,
                    f"BeforeStep hook '{failed_hook.hook_name}' failed: {failed_hook.error.message}",
                    context={'step': step.full_text, 'hook': failed_hook.hook_name},
                ))
                await self._after_step(result, context, tags)
                return result

        await self._run(step, context, result)
        await self._capture_screenshot(step, result, resource_context)
        await self._after_step(result, context, tags)
        return result

    async def _run(self, step: Step, context: Any, result: StepResult) -> None:
        error_context = {'step': step.full_text, 'line': step.line}

        try:
            definition = self.resolve(step)
        except AmbiguousStepError as e:
            logger.error(str(e))
            result.finish(StepStatus.AMBIGUOUS, ExecutionError.from_exception(e, ErrorType.EXECUTION, error_context))
            return

        if definition is None:
            message = f"No step definition found for: {step.full_text}"
            logger.error(message)
            result.finish(StepStatus.UNDEFINED, ExecutionError(ErrorType.EXECUTION, message, context=error_context))
            return

        timeout = self.config.step_timeout
        try:
            args = self.build_arguments(definition, step)
            await asyncio.wait_for(
                self.provider.invoke(definition, args, context),
                timeout=timeout / 1000 if timeout else None,
            )
            result.finish(StepStatus.PASSED)
            logger.debug(f"Step passed: {step.full_text}")

        except asyncio.TimeoutError:
            message = f"Step '{step.full_text}' timed out after {timeout}ms"
            logger.error(message)
            result.finish(StepStatus.FAILED, ExecutionError(ErrorType.TIMEOUT, message, context=error_context))

        except StepPending as e:
            logger.info(f"Step pending: {step.full_text}")
            result.finish(StepStatus.PENDING, ExecutionError.from_exception(e, ErrorType.EXECUTION, error_context))

        except StepSkipped as e:
            logger.info(f"Step skipped: {step.full_text}")
            result.skipped_reason = str(e) or "Skipped by step"
            result.finish(StepStatus.SKIPPED)

        except Exception as e:
            logger.error(f"Step failed: {step.full_text}: {e}")
            result.finish(StepStatus.FAILED, ExecutionError.from_exception(e, context=error_context))

    async def _capture_screenshot(
            self,
            step: Step,
            result: StepResult,
            resource_context: Optional[ResourceContext]
    ) -> None:
        if resource_context is None:
            return
        wanted = (
            (result.status is StepStatus.FAILED and self.config.screenshot_on_failure)
            or (result.status is StepStatus.PASSED and self.config.screenshot_on_pass)
        )
        if not wanted:
            return

        try:
            result.screenshot = await resource_context.screenshot(f"step_{step.line}_{result.status.value}")
        except Exception as e:
            logger.warning(f"Screenshot failed for '{step.full_text}': {e}")

    async def _after_step(self, result: StepResult, context: Any, tags: List[str]) -> None:
        if self.hook_executor is not None:
            after = await self.hook_executor.execute_hooks(HookType.AFTER_STEP, context, tags)
            result.hook_results.extend(after)
        self.sink.step_finished(result)


def skipped_step_result(step: Step, reason: str) -> StepResult:
    """Result for a step that was never run"""
    now = datetime.now()
    return StepResult(
        keyword=step.keyword,
        text=step.text,
        status=StepStatus.SKIPPED,
        line=step.line,
        start_time=now,
        end_time=now,
        skipped_reason=reason,
    )
