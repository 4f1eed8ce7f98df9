import re
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.base import NullResourceContext, ReportingSink, ResourceContext
from ..core.config import RunnerConfig
from ..core.exceptions import DataProviderError
from ..core.results import (
    ErrorType,
    ExecutionError,
    ScenarioResult,
    ScenarioStatus,
    StepResult,
    StepStatus,
)
from ..gherkin.models import Scenario, Step
from ..gherkin.tag_expression import evaluate_tag_expression
from ..hooks.executor import HookExecutor, first_failure
from ..hooks.models import HookType
from .context import FeatureContext, ScenarioContext
from .data_provider import FileDataProvider, data_source_from_tags
from .step_executor import StepExecutor, skipped_step_result

logger = logging.getLogger(__name__)

ResourceFactory = Callable[[], ResourceContext]

RETRY_TAG = re.compile(r'^@retry\((\d+)\)$', re.IGNORECASE)
FLAKY_TAG = '@flaky'
NO_RETRY_TAG = '@no-retry'
KNOWN_BROWSERS = ('chromium', 'chrome', 'firefox', 'webkit', 'safari', 'edge')

# Step statuses after which the remaining steps are not run
HALTING_STATUSES = (StepStatus.FAILED, StepStatus.UNDEFINED, StepStatus.AMBIGUOUS, StepStatus.PENDING)

SCENARIO_PRECEDENCE = {
    ScenarioStatus.FAILED: 4,
    ScenarioStatus.ERROR: 3,
    ScenarioStatus.SKIPPED: 2,
    ScenarioStatus.PASSED: 1,
}

STEP_PRECEDENCE = {
    StepStatus.FAILED: 6,
    StepStatus.AMBIGUOUS: 5,
    StepStatus.UNDEFINED: 4,
    StepStatus.PENDING: 3,
    StepStatus.SKIPPED: 2,
    StepStatus.PASSED: 1,
}


def merge_tags(*groups: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for group in groups:
        for tag in group:
            if tag not in merged:
                merged.append(tag)
    return merged


def skip_reason(scenario: Scenario, tags: List[str], config: RunnerConfig) -> Optional[str]:
    """Why a scenario should not run, or None when it should"""
    if '@skip' in tags:
        return 'Marked with @skip tag'
    if '@ignore' in tags:
        return 'Marked with @ignore tag'
    if '@manual' in tags:
        return 'Manual test - marked with @manual tag'
    if '@wip' in tags and not config.execute_wip:
        return 'Work in progress - marked with @wip tag'

    browser = (config.browser or '').lower()
    environment = (config.environment or '').lower()
    for tag in tags:
        name = tag.lower().lstrip('@')
        if name.endswith('-only'):
            target = name[:-len('-only')]
            if target in KNOWN_BROWSERS:
                if browser and target != browser:
                    return f'Skipped for {browser} browser'
            elif target != environment:
                return f'Not for {environment} environment'
        elif name.startswith('not-') and name[len('not-'):] in KNOWN_BROWSERS:
            if name[len('not-'):] == browser:
                return f'Not supported in {browser} browser'

    if config.tag_expression and not evaluate_tag_expression(config.tag_expression, tags):
        return f'Does not match tag expression: {config.tag_expression}'

    if config.skip_condition is not None:
        decision = config.skip_condition(scenario)
        if decision:
            return decision if isinstance(decision, str) else 'Custom skip condition'

    return None


def determine_scenario_status(steps: List[StepResult]) -> ScenarioStatus:
    """Reduce step statuses to a scenario status"""
    statuses = [step.status for step in steps]
    if StepStatus.FAILED in statuses:
        return ScenarioStatus.FAILED
    if StepStatus.UNDEFINED in statuses or StepStatus.AMBIGUOUS in statuses:
        return ScenarioStatus.ERROR
    if all(status is StepStatus.PASSED for status in statuses):
        return ScenarioStatus.PASSED
    if all(status is StepStatus.SKIPPED for status in statuses):
        return ScenarioStatus.SKIPPED
    return ScenarioStatus.ERROR


def _merge_steps(results: List[ScenarioResult]) -> List[StepResult]:
    """Per position: worst status, average duration, first error"""
    merged = []
    length = max(len(result.steps) for result in results)
    for position in range(length):
        column = [result.steps[position] for result in results if position < len(result.steps)]
        worst = max(column, key=lambda step: STEP_PRECEDENCE.get(step.status, 0))
        error = next((step.error for step in column if step.error is not None), None)
        merged.append(StepResult(
            keyword=column[0].keyword,
            text=column[0].text,
            status=worst.status,
            line=column[0].line,
            start_time=column[0].start_time,
            end_time=column[-1].end_time,
            duration=sum(step.duration for step in column) / len(column),
            error=error,
            skipped_reason=worst.skipped_reason,
        ))
    return merged


def merge_scenario_results(name: str, tags: List[str], results: List[ScenarioResult], line: int = 0) -> ScenarioResult:
    """
    Reduce the results of several concrete runs into one.

    Worst status wins with FAILED > ERROR > SKIPPED > PASSED.
    """
    status = max((result.status for result in results), key=lambda s: SCENARIO_PRECEDENCE.get(s, 0))
    starts = [result.start_time for result in results if result.start_time]
    ends = [result.end_time for result in results if result.end_time]

    merged = ScenarioResult(
        name=name,
        status=status,
        tags=list(tags),
        steps=_merge_steps(results),
        start_time=min(starts) if starts else None,
        end_time=max(ends) if ends else None,
        duration=sum(result.duration for result in results),
        error=next((result.error for result in results if result.error is not None), None),
        retries=sum(result.retries for result in results),
        line=line,
        instances=list(results),
    )
    for result in results:
        merged.hook_results.extend(result.hook_results)
        merged.teardown_errors.extend(result.teardown_errors)
    if status is ScenarioStatus.SKIPPED:
        merged.skipped_reason = next((r.skipped_reason for r in results if r.skipped_reason), None)
    return merged


class ScenarioExecutor:
    """Owns the lifecycle of one scenario: expansion, hooks, steps and retries"""

    def __init__(
            self,
            step_executor: StepExecutor,
            hook_executor: HookExecutor,
            config: Optional[RunnerConfig] = None,
            resource_factory: Optional[ResourceFactory] = None,
            data_provider: Optional[FileDataProvider] = None,
            sink: Optional[ReportingSink] = None
    ):
        self.step_executor = step_executor
        self.hook_executor = hook_executor
        self.config = config or RunnerConfig()
        self.resource_factory = resource_factory or NullResourceContext
        self.data_provider = data_provider or FileDataProvider()
        self.sink = sink or ReportingSink()

    async def execute(
            self,
            scenario: Scenario,
            feature_context: FeatureContext,
            background_steps: Optional[List[Step]] = None,
            feature_tags: Iterable[str] = ()
    ) -> ScenarioResult:
        """
        Execute a scenario, scenario outline or data-driven scenario

        Args:
            scenario: Parsed scenario
            feature_context: Shared feature state (already isolated for parallel runs)
            background_steps: Steps prepended to every concrete run
            feature_tags: Tags inherited from the feature

        Returns:
            ScenarioResult. Step and hook failures are folded into it.
        """
        tags = merge_tags(scenario.tags, feature_tags)
        logger.info(f"Scenario started: {scenario.name}")

        if scenario.is_outline:
            result = await self._execute_outline(scenario, feature_context, background_steps, tags)
        else:
            try:
                source = data_source_from_tags(scenario.tags)
            except DataProviderError as e:
                result = self._error_result(scenario, tags, e)
            else:
                if source is not None:
                    result = await self._execute_data_driven(scenario, source, feature_context, background_steps, tags)
                else:
                    result = await self._execute_with_retry(scenario, feature_context, background_steps, tags)

        logger.info(f"Scenario completed: {scenario.name} - {result.status.value}")
        self.sink.scenario_finished(result)
        return result

    async def _execute_outline(
            self,
            scenario: Scenario,
            feature_context: FeatureContext,
            background_steps: Optional[List[Step]],
            tags: List[str]
    ) -> ScenarioResult:
        results = []
        skipped_reasons = []
        for examples in scenario.examples:
            instance_tags = merge_tags(tags, examples.tags)
            reason = self.check_skip(scenario, instance_tags)
            if reason:
                logger.info(f"Skipping examples '{examples.name or examples.line}' of '{scenario.name}': {reason}")
                skipped_reasons.append(reason)
                continue

            for values in examples.as_dicts():
                instance = scenario.instantiate(values, examples.tags)
                results.append(
                    await self._execute_with_retry(instance, feature_context, background_steps, instance_tags, values)
                )

        if not results:
            reason = skipped_reasons[0] if skipped_reasons else "Scenario Outline has no example rows"
            return ScenarioResult.skipped(scenario.name, tags, reason, scenario.line)
        return merge_scenario_results(scenario.name, tags, results, scenario.line)

    async def _execute_data_driven(
            self,
            scenario: Scenario,
            source,
            feature_context: FeatureContext,
            background_steps: Optional[List[Step]],
            tags: List[str]
    ) -> ScenarioResult:
        try:
            rows = self.data_provider.load(source)
        except DataProviderError as e:
            logger.error(f"Data provider failed for '{scenario.name}': {e}")
            return self._error_result(scenario, tags, e)

        if not rows:
            return ScenarioResult.skipped(scenario.name, tags, "No test data rows to execute", scenario.line)

        results = []
        for row in rows:
            instance = scenario.instantiate(row)
            results.append(await self._execute_with_retry(instance, feature_context, background_steps, tags, row))
        return merge_scenario_results(scenario.name, tags, results, scenario.line)

    def _error_result(self, scenario: Scenario, tags: List[str], error: Exception) -> ScenarioResult:
        result = ScenarioResult(
            name=scenario.name,
            status=ScenarioStatus.ERROR,
            tags=list(tags),
            start_time=datetime.now(),
            error=ExecutionError.from_exception(error, ErrorType.SETUP, {'scenario': scenario.name}),
            line=scenario.line,
        )
        return result.finish()

    def check_skip(self, scenario: Scenario, tags: List[str]) -> Optional[str]:
        """skip_reason with a raising custom condition turned into a skip"""
        try:
            return skip_reason(scenario, tags, self.config)
        except Exception as e:
            logger.error(f"Skip condition raised for '{scenario.name}': {e}")
            return f'Skip condition failed: {e}'

    def selection_skip_reason(self, scenario: Scenario, tags: List[str]) -> Optional[str]:
        """
        Skip reason for a whole scenario.

        An outline is selected when at least one of its Examples blocks is,
        judged with that block's tags added.
        """
        if not scenario.is_outline or not scenario.examples:
            return self.check_skip(scenario, tags)

        reasons = [self.check_skip(scenario, merge_tags(tags, examples.tags)) for examples in scenario.examples]
        if any(reason is None for reason in reasons):
            return None
        return reasons[0]

    def retry_enabled(self, tags: List[str]) -> bool:
        if NO_RETRY_TAG in tags:
            return False
        if FLAKY_TAG in tags:
            return True
        return self.config.retry_failed

    def max_retries(self, tags: List[str]) -> int:
        for tag in tags:
            match = RETRY_TAG.match(tag)
            if match:
                return int(match.group(1))
        return self.config.retry_count

    async def _execute_with_retry(
            self,
            scenario: Scenario,
            feature_context: FeatureContext,
            background_steps: Optional[List[Step]],
            tags: List[str],
            test_data: Optional[Dict[str, Any]] = None
    ) -> ScenarioResult:
        result = await self.execute_plain(scenario, feature_context, background_steps, tags, test_data)
        if result.status is not ScenarioStatus.FAILED or not self.retry_enabled(tags):
            return result

        max_retries = self.max_retries(tags)
        attempt = 0
        while attempt < max_retries and result.status is ScenarioStatus.FAILED:
            attempt += 1
            delay = self.config.retry_delay * attempt
            logger.info(f"Retrying scenario '{scenario.name}' ({attempt}/{max_retries}) in {delay}ms")
            if delay:
                await asyncio.sleep(delay / 1000)
            result = await self.execute_plain(scenario, feature_context, background_steps, tags, test_data)

        result.retries = attempt
        return result

    async def execute_plain(
            self,
            scenario: Scenario,
            feature_context: FeatureContext,
            background_steps: Optional[List[Step]] = None,
            tags: Optional[List[str]] = None,
            test_data: Optional[Dict[str, Any]] = None
    ) -> ScenarioResult:
        """One attempt: acquire resources, Before hooks, steps, After hooks, release"""
        tags = list(tags if tags is not None else scenario.tags)
        steps = list(background_steps or []) + list(scenario.steps)
        result = ScenarioResult(
            name=scenario.name,
            status=ScenarioStatus.RUNNING,
            tags=tags,
            start_time=datetime.now(),
            test_data=test_data,
            line=scenario.line,
        )
        context = feature_context.create_scenario_context(scenario, tags, test_data)
        resource_context = self.resource_factory()
        context.resource_context = resource_context

        try:
            context.resources = await resource_context.acquire()
        except Exception as e:
            logger.error(f"Could not acquire resources for '{scenario.name}': {e}")
            result.status = ScenarioStatus.ERROR
            result.error = ExecutionError.from_exception(e, ErrorType.SETUP, {'scenario': scenario.name})
            result.steps = [skipped_step_result(step, "Resources unavailable") for step in steps]
            await self._release(resource_context, result)
            return result.finish()

        try:
            before = await self.hook_executor.execute_hooks(HookType.BEFORE, context, tags)
            result.hook_results.extend(before)
            failed_hook = first_failure(before)

            if failed_hook is not None:
                result.status = ScenarioStatus.FAILED
                result.error = ExecutionError(
                    ErrorType.SETUP,
                    f"Before hook '{failed_hook.hook_name}' failed: {failed_hook.error.message}",
                    context={'scenario': scenario.name, 'hook': failed_hook.hook_name},
                )
                result.steps = [skipped_step_result(step, "Before hook failed") for step in steps]
            else:
                result.steps = await self.run_steps(steps, context, resource_context, tags)
                result.status = determine_scenario_status(result.steps)
                result.error = next((step.error for step in result.steps if step.error is not None), None)

        except Exception as e:
            logger.error(f"Unexpected error in scenario '{scenario.name}': {e}")
            result.status = ScenarioStatus.ERROR
            result.error = ExecutionError.from_exception(e, ErrorType.SYSTEM, {'scenario': scenario.name})

        finally:
            after = await self.hook_executor.execute_hooks(HookType.AFTER, context, tags)
            result.hook_results.extend(after)
            for hook_result in after:
                if hook_result.error is not None:
                    result.teardown_errors.append(ExecutionError(
                        ErrorType.TEARDOWN,
                        hook_result.error.message,
                        stack=hook_result.error.stack,
                        context={'scenario': scenario.name, 'hook': hook_result.hook_name},
                    ))
            await self._release(resource_context, result)

        return result.finish()

    async def run_steps(
            self,
            steps: List[Step],
            context: ScenarioContext,
            resource_context: Optional[ResourceContext] = None,
            tags: Optional[List[str]] = None
    ) -> List[StepResult]:
        """Run steps in order; once one fails the rest are recorded as skipped"""
        results = []
        halted: Optional[StepStatus] = None

        for step in steps:
            if halted is not None:
                reason = "Previous step failed" if halted is StepStatus.FAILED else f"Previous step {halted.value}"
                results.append(skipped_step_result(step, reason))
                continue

            step_result = await self.step_executor.execute(step, context, resource_context, tags)
            results.append(step_result)
            if step_result.status in HALTING_STATUSES:
                halted = step_result.status

        return results

    async def _release(self, resource_context: ResourceContext, result: ScenarioResult) -> None:
        try:
            await resource_context.release()
        except Exception as e:
            logger.error(f"Failed to release resources for '{result.name}': {e}")
            result.teardown_errors.append(
                ExecutionError.from_exception(e, ErrorType.TEARDOWN, {'scenario': result.name})
            )
