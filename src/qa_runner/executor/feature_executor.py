import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..core.base import ReportingSink
from ..core.config import RunnerConfig
from ..core.exceptions import BackgroundFailedError, ConfigurationError, TagExpressionError
from ..core.results import (
    BackgroundResult,
    ErrorType,
    ExecutionError,
    FeatureMetrics,
    FeatureResult,
    FeatureStatus,
    ScenarioResult,
    ScenarioStatus,
    StepStatus,
)
from ..gherkin.models import Feature, Scenario, Step
from ..gherkin.tag_expression import parse_tag_expression
from ..hooks.executor import HookExecutor, first_failure
from ..hooks.models import HookType
from .context import FeatureContext
from .scenario_executor import ScenarioExecutor, merge_tags
from .step_executor import skipped_step_result

logger = logging.getLogger(__name__)

FAILING_STATUSES = (ScenarioStatus.FAILED, ScenarioStatus.ERROR)
BACKGROUND_FAILURES = (StepStatus.FAILED, StepStatus.UNDEFINED, StepStatus.AMBIGUOUS)


def determine_feature_status(results: List[ScenarioResult]) -> FeatureStatus:
    """Mixed outcomes count as failed"""
    if not results:
        return FeatureStatus.SKIPPED
    statuses = [result.status for result in results]
    if any(status in FAILING_STATUSES for status in statuses):
        return FeatureStatus.FAILED
    if all(status is ScenarioStatus.PASSED for status in statuses):
        return FeatureStatus.PASSED
    if all(status is ScenarioStatus.SKIPPED for status in statuses):
        return FeatureStatus.SKIPPED
    return FeatureStatus.FAILED


def calculate_metrics(results: List[ScenarioResult]) -> FeatureMetrics:
    """Roll finished scenario results up into feature metrics"""
    metrics = FeatureMetrics(total_scenarios=len(results))
    executed = []
    step_durations = []

    for result in results:
        if result.status is ScenarioStatus.PASSED:
            metrics.passed_scenarios += 1
        elif result.status is ScenarioStatus.FAILED:
            metrics.failed_scenarios += 1
        elif result.status is ScenarioStatus.ERROR:
            metrics.error_scenarios += 1
        elif result.status is ScenarioStatus.SKIPPED:
            metrics.skipped_scenarios += 1

        if result.status is not ScenarioStatus.SKIPPED:
            executed.append(result)

        for step in result.steps:
            metrics.total_steps += 1
            if step.status is StepStatus.PASSED:
                metrics.passed_steps += 1
            elif step.status is StepStatus.SKIPPED:
                metrics.skipped_steps += 1
            else:
                metrics.failed_steps += 1
            if step.status is not StepStatus.SKIPPED:
                step_durations.append(step.duration)

        for tag in result.tags:
            stats = metrics.tag_stats.setdefault(tag, {'total': 0, 'passed': 0, 'failed': 0, 'skipped': 0})
            stats['total'] += 1
            if result.status is ScenarioStatus.PASSED:
                stats['passed'] += 1
            elif result.status is ScenarioStatus.SKIPPED:
                stats['skipped'] += 1
            else:
                stats['failed'] += 1

    if executed:
        metrics.average_scenario_duration = sum(r.duration for r in executed) / len(executed)
        fastest = min(executed, key=lambda r: r.duration)
        slowest = max(executed, key=lambda r: r.duration)
        metrics.fastest_scenario = {'name': fastest.name, 'duration': fastest.duration}
        metrics.slowest_scenario = {'name': slowest.name, 'duration': slowest.duration}
    if step_durations:
        metrics.average_step_duration = sum(step_durations) / len(step_durations)
    if results:
        failing = metrics.failed_scenarios + metrics.error_scenarios
        metrics.error_rate = failing / len(results) * 100
        metrics.success_rate = metrics.passed_scenarios / len(results) * 100

    return metrics


class FeatureExecutor:
    """Owns the lifecycle of one feature: hooks, background, scheduling and aggregation"""

    def __init__(
            self,
            scenario_executor: ScenarioExecutor,
            hook_executor: HookExecutor,
            config: Optional[RunnerConfig] = None,
            sink: Optional[ReportingSink] = None
    ):
        self.scenario_executor = scenario_executor
        self.hook_executor = hook_executor
        self.config = config or RunnerConfig()
        self.sink = sink or ReportingSink()

        if self.config.tag_expression:
            try:
                parse_tag_expression(self.config.tag_expression)
            except TagExpressionError as e:
                raise ConfigurationError(str(e)) from e

    async def execute(self, feature: Feature, shared_data: Optional[Dict[str, Any]] = None) -> FeatureResult:
        """
        Execute every scenario of a feature

        Raises:
            BackgroundFailedError: only when configured to abort on background failure
        """
        logger.info(f"Feature started: {feature.name}")
        result = FeatureResult(
            name=feature.name,
            status=FeatureStatus.RUNNING,
            uri=feature.uri,
            tags=list(feature.tags),
            description=feature.description,
            start_time=datetime.now(),
        )
        feature_context = FeatureContext(feature=feature, config=self.config, shared_data=dict(shared_data or {}))
        abort: Optional[BackgroundFailedError] = None

        try:
            before = await self.hook_executor.execute_hooks(HookType.BEFORE_FEATURE, feature_context, feature.tags)
            result.hook_results.extend(before)
            failed_hook = first_failure(before)

            if failed_hook is not None:
                result.errors.append(ExecutionError(
                    ErrorType.SETUP,
                    f"Before feature hook '{failed_hook.hook_name}' failed: {failed_hook.error.message}",
                    context={'feature': feature.name, 'hook': failed_hook.hook_name},
                ))

            if failed_hook is not None and not self.config.continue_on_hook_failure:
                result.scenarios = self._skip_all(feature, 'Before feature hook failed')
            else:
                background_steps, background_failed = await self._process_background(feature, feature_context, result)
                if background_failed and self.config.abort_on_background_failure:
                    abort = BackgroundFailedError(f"Background failed in feature '{feature.name}'")
                    result.scenarios = self._skip_all(feature, 'Background failed')
                elif background_failed and not self.config.continue_on_background_failure:
                    result.scenarios = self._skip_all(feature, 'Background failed')
                elif self.config.parallel and len(feature.scenarios) > 1:
                    result.scenarios = await self._execute_parallel(feature, feature_context, background_steps)
                else:
                    result.scenarios = await self._execute_sequential(feature, feature_context, background_steps)

        finally:
            after = await self.hook_executor.execute_hooks(
                HookType.AFTER_FEATURE, feature_context, feature.tags, reverse=True
            )
            result.hook_results.extend(after)
            for hook_result in after:
                if hook_result.error is not None:
                    result.errors.append(ExecutionError(
                        ErrorType.TEARDOWN,
                        hook_result.error.message,
                        stack=hook_result.error.stack,
                        context={'feature': feature.name, 'hook': hook_result.hook_name},
                    ))

        result.status = determine_feature_status(result.scenarios)
        result.metrics = calculate_metrics(result.scenarios)
        result.finish()
        logger.info(f"Feature completed: {feature.name} - {result.status.value} "
                    f"({result.metrics.passed_scenarios}/{result.metrics.total_scenarios} passed)")
        self.sink.feature_finished(result)

        if abort is not None:
            raise abort
        return result

    async def _process_background(
            self,
            feature: Feature,
            feature_context: FeatureContext,
            result: FeatureResult
    ) -> Tuple[List[Step], bool]:
        """Run the background once; returns the steps to prepend and whether it failed"""
        background = feature.background
        if background is None or not background.steps:
            return [], False

        logger.info(f"Background started: {background.name or 'Background'}")
        started = datetime.now()
        background_result = BackgroundResult(name=background.name or 'Background')
        context = feature_context.create_scenario_context(background, list(feature.tags))
        resource_context = self.scenario_executor.resource_factory()
        context.resource_context = resource_context

        try:
            context.resources = await resource_context.acquire()
            background_result.steps = await self.scenario_executor.run_steps(
                background.steps, context, resource_context, list(feature.tags)
            )
            background_result.failed = any(s.status in BACKGROUND_FAILURES for s in background_result.steps)
            background_result.error = next(
                (s.error for s in background_result.steps if s.error is not None), None
            )
        except Exception as e:
            logger.error(f"Background execution failed: {e}")
            background_result.failed = True
            background_result.error = ExecutionError.from_exception(e, ErrorType.SETUP, {'feature': feature.name})
        finally:
            try:
                await resource_context.release()
            except Exception as e:
                logger.error(f"Failed to release background resources: {e}")
                result.errors.append(ExecutionError.from_exception(e, ErrorType.TEARDOWN, {'feature': feature.name}))

        background_result.duration = (datetime.now() - started).total_seconds() * 1000
        result.background = background_result
        logger.info(f"Background completed: {'failed' if background_result.failed else 'passed'}")

        if background_result.failed:
            return [], True
        return list(background.steps), False

    def _skip_all(self, feature: Feature, reason: str) -> List[ScenarioResult]:
        return [self._skipped(scenario, merge_tags(scenario.tags, feature.tags), reason) for scenario in feature.scenarios]

    def _skipped(self, scenario: Scenario, tags: List[str], reason: str) -> ScenarioResult:
        logger.info(f"Skipping scenario '{scenario.name}': {reason}")
        result = ScenarioResult.skipped(scenario.name, tags, reason, scenario.line)
        result.steps = [skipped_step_result(step, reason) for step in scenario.steps]
        self.sink.scenario_finished(result)
        return result

    async def _run_scenario(
            self,
            scenario: Scenario,
            feature: Feature,
            feature_context: FeatureContext,
            background_steps: List[Step]
    ) -> ScenarioResult:
        """Apply skip rules, then execute under the scenario timeout"""
        tags = merge_tags(scenario.tags, feature.tags)
        reason = self.scenario_executor.selection_skip_reason(scenario, tags)
        if reason:
            return self._skipped(scenario, tags, reason)

        timeout = self.config.scenario_timeout
        started = datetime.now()
        try:
            return await asyncio.wait_for(
                self.scenario_executor.execute(scenario, feature_context, background_steps, feature.tags),
                timeout=timeout / 1000 if timeout else None,
            )
        except asyncio.TimeoutError:
            message = f"Scenario '{scenario.name}' timed out after {timeout}ms"
            logger.error(message)
            result = ScenarioResult(
                name=scenario.name,
                status=ScenarioStatus.FAILED,
                tags=tags,
                start_time=started,
                error=ExecutionError(ErrorType.TIMEOUT, message, context={'scenario': scenario.name}),
                line=scenario.line,
            )
        except Exception as e:
            logger.error(f"Scenario execution error: {scenario.name}: {e}")
            result = ScenarioResult(
                name=scenario.name,
                status=ScenarioStatus.ERROR,
                tags=tags,
                start_time=started,
                error=ExecutionError.from_exception(e, ErrorType.SYSTEM, {'scenario': scenario.name}),
                line=scenario.line,
            )
        result.finish()
        self.sink.scenario_finished(result)
        return result

    async def _execute_sequential(
            self,
            feature: Feature,
            feature_context: FeatureContext,
            background_steps: List[Step]
    ) -> List[ScenarioResult]:
        results = []
        scenarios = feature.scenarios

        for index, scenario in enumerate(scenarios):
            if index > 0 and self.config.delay_between_scenarios:
                await asyncio.sleep(self.config.delay_between_scenarios / 1000)

            result = await self._run_scenario(scenario, feature, feature_context, background_steps)
            results.append(result)

            if result.status in FAILING_STATUSES and self.config.stop_on_first_failure:
                logger.warning("Stopping feature execution due to scenario failure")
                for remaining in scenarios[index + 1:]:
                    results.append(self._skipped(
                        remaining, merge_tags(remaining.tags, feature.tags), 'Previous scenario failed'
                    ))
                break

        return results

    async def _execute_parallel(
            self,
            feature: Feature,
            feature_context: FeatureContext,
            background_steps: List[Step]
    ) -> List[ScenarioResult]:
        """
        Bounded worker pool over a FIFO queue of (index, scenario) pairs.

        Each result lands at its scenario's original index, so ordering does
        not depend on completion order.
        """
        scenarios = feature.scenarios
        results: List[Optional[ScenarioResult]] = [None] * len(scenarios)
        queue: asyncio.Queue = asyncio.Queue()
        for index, scenario in enumerate(scenarios):
            queue.put_nowait((index, scenario))

        stopped = False

        async def worker(worker_id: int) -> None:
            nonlocal stopped
            while True:
                try:
                    index, scenario = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                if stopped:
                    results[index] = self._skipped(
                        scenario, merge_tags(scenario.tags, feature.tags), 'Previous scenario failed'
                    )
                    continue

                logger.debug(f"Worker {worker_id} picked scenario {index}: {scenario.name}")
                isolated = feature_context.isolated_copy()
                results[index] = await self._run_scenario(scenario, feature, isolated, background_steps)

                if results[index].status in FAILING_STATUSES and self.config.stop_on_first_failure:
                    stopped = True

        worker_count = min(self.config.max_workers, len(scenarios))
        logger.info(f"Running {len(scenarios)} scenario(s) with {worker_count} worker(s)")
        await asyncio.gather(*(worker(i) for i in range(worker_count)))
        return results
