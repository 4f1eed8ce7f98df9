import asyncio
import time

import pytest
from unittest.mock import Mock
from qa_runner.core.config import RunnerConfig
from qa_runner.core.exceptions import BackgroundFailedError, ConfigurationError
from qa_runner.core.results import (
    ErrorType,
    FeatureStatus,
    ScenarioResult,
    ScenarioStatus,
    StepResult,
    StepStatus,
)
from qa_runner.executor.context import FeatureContext
from qa_runner.executor.feature_executor import (
    FeatureExecutor,
    calculate_metrics,
    determine_feature_status,
)
from qa_runner.executor.scenario_executor import ScenarioExecutor, skip_reason
from qa_runner.executor.step_definitions import StepDefinitionRegistry
from qa_runner.executor.step_executor import StepExecutor
from qa_runner.gherkin.models import Feature, Scenario, ScenarioKind, Step
from qa_runner.gherkin.parser import parse_feature
from qa_runner.hooks import HookExecutor, HookRegistry, HookType


@pytest.fixture
def registry():
    registry = StepDefinitionRegistry()
    registry.add_definition('given', r'a passing step', lambda ctx: None)
    registry.add_definition('given', r'a failing step', Mock(side_effect=AssertionError("nope")))

    async def wait(ctx, ms):
        await asyncio.sleep(ms / 1000)
        ctx.shared_data.setdefault('finished', []).append(ctx.scenario_name)

    registry.add_definition('given', r'I wait (\d+)ms', wait)
    return registry


@pytest.fixture
def hooks():
    return HookRegistry()


def build(registry, hooks, config, sink=None):
    hook_executor = HookExecutor(hooks)
    step_executor = StepExecutor(registry, hook_executor, config)
    scenario_executor = ScenarioExecutor(step_executor, hook_executor, config, sink=sink)
    return FeatureExecutor(scenario_executor, hook_executor, config, sink)


def scenario(name, *texts, tags=None):
    return Scenario(name, steps=[Step("Given", text) for text in texts], tags=list(tags or []))


class TestSkipRules:
    """Test skip_reason"""

    @pytest.fixture
    def config(self):
        return RunnerConfig(browser="chromium", environment="staging")

    @pytest.mark.parametrize("tags,expected", [
        (["@skip"], "Marked with @skip tag"),
        (["@ignore"], "Marked with @ignore tag"),
        (["@manual"], "Manual test - marked with @manual tag"),
        (["@wip"], "Work in progress - marked with @wip tag"),
        (["@firefox-only"], "Skipped for chromium browser"),
        (["@not-chromium"], "Not supported in chromium browser"),
        (["@prod-only"], "Not for staging environment"),
    ])
    def test_skipped(self, config, tags, expected):
        """Test each skip tag"""
        assert skip_reason(scenario("S"), tags, config) == expected

    @pytest.mark.parametrize("tags", [
        [], ["@smoke"], ["@chromium-only"], ["@not-firefox"], ["@staging-only"],
    ])
    def test_not_skipped(self, config, tags):
        """Test tags that keep a scenario running"""
        assert skip_reason(scenario("S"), tags, config) is None

    def test_wip_enabled(self):
        """Test @wip runs when WIP execution is on"""
        assert skip_reason(scenario("S"), ["@wip"], RunnerConfig(execute_wip=True)) is None

    def test_tag_expression(self):
        """Test scenario selection by tag expression"""
        config = RunnerConfig(tag_expression="@smoke and not @slow")

        assert skip_reason(scenario("S"), ["@smoke"], config) is None
        assert skip_reason(scenario("S"), ["@smoke", "@slow"], config).startswith("Does not match")

    def test_skip_condition(self):
        """Test a custom skip predicate"""
        config = RunnerConfig(skip_condition=lambda s: "not today" if s.name == "S" else False)

        assert skip_reason(scenario("S"), [], config) == "not today"
        assert skip_reason(scenario("T"), [], config) is None


class TestFeatureStatus:
    """Test feature status and metrics"""

    def results(self, *statuses):
        return [ScenarioResult(f"s{i}", status) for i, status in enumerate(statuses)]

    def test_status_lattice(self):
        """Test FAILED/ERROR dominate and mixes count as failed"""
        assert determine_feature_status(self.results(ScenarioStatus.PASSED)) is FeatureStatus.PASSED
        assert determine_feature_status(self.results(ScenarioStatus.PASSED, ScenarioStatus.ERROR)) is FeatureStatus.FAILED
        assert determine_feature_status(self.results(ScenarioStatus.SKIPPED)) is FeatureStatus.SKIPPED
        assert determine_feature_status(self.results(ScenarioStatus.PASSED, ScenarioStatus.SKIPPED)) is FeatureStatus.FAILED
        assert determine_feature_status([]) is FeatureStatus.SKIPPED

    def test_metrics(self):
        """Test metrics rollup"""
        results = [
            ScenarioResult("fast", ScenarioStatus.PASSED, tags=["@smoke"], duration=5.0,
                           steps=[StepResult("Given", "x", StepStatus.PASSED, duration=5.0)]),
            ScenarioResult("slow", ScenarioStatus.FAILED, tags=["@smoke"], duration=15.0,
                           steps=[StepResult("Given", "x", StepStatus.FAILED, duration=15.0),
                                  StepResult("Then", "y", StepStatus.SKIPPED)]),
            ScenarioResult("skipped", ScenarioStatus.SKIPPED),
            ScenarioResult("broken", ScenarioStatus.ERROR, duration=10.0),
        ]

        metrics = calculate_metrics(results)

        assert metrics.total_scenarios == 4
        assert metrics.passed_scenarios == 1
        assert metrics.failed_scenarios == 1
        assert metrics.skipped_scenarios == 1
        assert metrics.error_scenarios == 1
        assert metrics.total_steps == 3
        assert metrics.skipped_steps == 1
        assert metrics.average_scenario_duration == 10.0
        assert metrics.average_step_duration == 10.0
        assert metrics.fastest_scenario == {'name': 'fast', 'duration': 5.0}
        assert metrics.slowest_scenario == {'name': 'slow', 'duration': 15.0}
        assert metrics.error_rate == 50.0
        assert metrics.success_rate == 25.0
        assert metrics.tag_stats['@smoke'] == {'total': 2, 'passed': 1, 'failed': 1, 'skipped': 0}


class TestFeatureExecutor:
    """Test FeatureExecutor"""

    @pytest.mark.asyncio
    async def test_sequential_run(self, registry, hooks):
        """Test scenarios run in file order"""
        feature = Feature("F", scenarios=[
            scenario("one", "a passing step"),
            scenario("two", "a passing step"),
        ])
        executor = build(registry, hooks, RunnerConfig())

        result = await executor.execute(feature)

        assert result.status is FeatureStatus.PASSED
        assert [s.name for s in result.scenarios] == ["one", "two"]
        assert result.metrics.success_rate == 100.0
        assert result.duration >= 0

    @pytest.mark.asyncio
    async def test_skip_tags_applied(self, registry, hooks):
        """Test skipped scenarios are recorded without running"""
        feature = Feature("F", scenarios=[
            scenario("run", "a passing step"),
            scenario("skip", "a failing step", tags=["@skip"]),
        ])
        executor = build(registry, hooks, RunnerConfig())

        result = await executor.execute(feature)

        assert result.scenarios[1].status is ScenarioStatus.SKIPPED
        assert result.scenarios[1].skipped_reason == "Marked with @skip tag"
        assert result.scenarios[1].steps[0].status is StepStatus.SKIPPED
        assert result.status is FeatureStatus.FAILED

    OUTLINE = (
        "Feature: F\n"
        "  Scenario Outline: numbered\n"
        "    Given row <n>\n"
        "\n"
        "    {first_tags}\n"
        "    Examples: first\n"
        "      | n |\n"
        "      | 1 |\n"
        "\n"
        "    Examples: second\n"
        "      | n |\n"
        "      | 2 |\n"
    )

    def outline_registry(self, rows):
        registry = StepDefinitionRegistry()
        registry.add_definition('given', r'row (\d+)', lambda ctx, n: rows.append(n))
        return registry

    @pytest.mark.asyncio
    async def test_tag_expression_selects_examples_block(self, hooks):
        """Test a tag on one Examples block selects only that block's rows"""
        rows = []
        feature = parse_feature(self.OUTLINE.format(first_tags="@smoke"))
        executor = build(self.outline_registry(rows), hooks, RunnerConfig(tag_expression="@smoke"))

        result = await executor.execute(feature)

        assert rows == [1]
        assert result.scenarios[0].status is ScenarioStatus.PASSED
        assert len(result.scenarios[0].instances) == 1

    @pytest.mark.asyncio
    async def test_skip_tag_on_examples_block(self, hooks):
        """Test an Examples block tagged @skip does not run"""
        rows = []
        feature = parse_feature(self.OUTLINE.format(first_tags="@skip"))
        executor = build(self.outline_registry(rows), hooks, RunnerConfig())

        result = await executor.execute(feature)

        assert rows == [2]
        assert result.scenarios[0].status is ScenarioStatus.PASSED

    @pytest.mark.asyncio
    async def test_outline_skipped_when_no_examples_block_selected(self, hooks):
        """Test an outline is skipped when no Examples block matches"""
        rows = []
        feature = parse_feature(self.OUTLINE.format(first_tags="@smoke"))
        executor = build(self.outline_registry(rows), hooks, RunnerConfig(tag_expression="@regression"))

        result = await executor.execute(feature)

        assert rows == []
        assert result.scenarios[0].status is ScenarioStatus.SKIPPED
        assert result.scenarios[0].skipped_reason == "Does not match tag expression: @regression"

    @pytest.mark.asyncio
    async def test_feature_tags_inherited(self, registry, hooks):
        """Test feature tags take part in skip rules"""
        feature = Feature("F", tags=["@manual"], scenarios=[scenario("s", "a passing step")])
        executor = build(registry, hooks, RunnerConfig())

        result = await executor.execute(feature)

        assert result.status is FeatureStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_stop_on_first_failure(self, registry, hooks):
        """Test remaining scenarios are skipped after a failure"""
        feature = Feature("F", scenarios=[
            scenario("one", "a failing step"),
            scenario("two", "a passing step"),
            scenario("three", "a passing step"),
        ])
        executor = build(registry, hooks, RunnerConfig(stop_on_first_failure=True))

        result = await executor.execute(feature)

        assert [s.status for s in result.scenarios] == [
            ScenarioStatus.FAILED, ScenarioStatus.SKIPPED, ScenarioStatus.SKIPPED,
        ]
        assert result.scenarios[1].skipped_reason == "Previous scenario failed"

    @pytest.mark.asyncio
    async def test_parallel_results_keep_declaration_order(self, registry, hooks):
        """Test results are indexed by position, not completion"""
        feature = Feature("F", scenarios=[
            scenario("s0", "I wait 60ms"),
            scenario("s1", "I wait 40ms"),
            scenario("s2", "I wait 5ms"),
        ])
        shared = {}
        executor = build(registry, hooks, RunnerConfig(parallel=True, max_workers=3))
        executor_context_data = []

        original = executor.scenario_executor.execute

        async def tracking(scenario_, feature_context, *args, **kwargs):
            executor_context_data.append(feature_context)
            result = await original(scenario_, feature_context, *args, **kwargs)
            shared.setdefault('order', []).extend(feature_context.shared_data.get('finished', []))
            return result

        executor.scenario_executor.execute = tracking

        result = await executor.execute(feature)

        assert shared['order'] == ["s2", "s1", "s0"]
        assert [s.name for s in result.scenarios] == ["s0", "s1", "s2"]
        assert all(s.status is ScenarioStatus.PASSED for s in result.scenarios)
        assert len({id(ctx.shared_data) for ctx in executor_context_data}) == 3

    @pytest.mark.asyncio
    async def test_parallel_worker_pool_is_bounded(self, registry, hooks):
        """Test no more than max_workers scenarios run at once"""
        running = []
        peak = []
        registry = StepDefinitionRegistry()

        async def busy(ctx):
            running.append(1)
            peak.append(len(running))
            await asyncio.sleep(0.01)
            running.pop()

        registry.add_definition('given', r'busy', busy)
        feature = Feature("F", scenarios=[scenario(f"s{i}", "busy") for i in range(6)])
        executor = build(registry, hooks, RunnerConfig(parallel=True, max_workers=2))

        result = await executor.execute(feature)

        assert max(peak) == 2
        assert len(result.scenarios) == 6

    @pytest.mark.asyncio
    async def test_parallel_workers_overlap_blocking_sync_steps(self, hooks):
        """Test plain step functions that block do not serialize the worker pool"""
        registry = StepDefinitionRegistry()
        registry.add_definition('given', r'I block', lambda ctx: time.sleep(0.3))
        feature = Feature("F", scenarios=[scenario(f"s{i}", "I block") for i in range(3)])
        executor = build(registry, hooks, RunnerConfig(parallel=True, max_workers=3))

        started = time.monotonic()
        result = await executor.execute(feature)
        elapsed = time.monotonic() - started

        assert [s.status for s in result.scenarios] == [ScenarioStatus.PASSED] * 3
        assert elapsed < 0.8

    @pytest.mark.asyncio
    async def test_background_runs_once_and_is_prepended(self, hooks):
        """Test background runs once on its own, then before every scenario"""
        calls = []
        registry = StepDefinitionRegistry()
        registry.add_definition('given', r'setup', lambda ctx: calls.append(("setup", ctx.scenario_name)))
        registry.add_definition('given', r'work', lambda ctx: calls.append(("work", ctx.scenario_name)))
        feature = parse_feature(
            "Feature: F\n"
            "  Background: prepare\n"
            "    Given setup\n"
            "  Scenario: A\n"
            "    Given work\n"
        )
        executor = build(registry, hooks, RunnerConfig())

        result = await executor.execute(feature)

        assert calls == [("setup", "prepare"), ("setup", "A"), ("work", "A")]
        assert result.background.failed is False
        assert len(result.scenarios[0].steps) == 2

    @pytest.mark.asyncio
    async def test_failed_background_skips_scenarios(self, registry, hooks):
        """Test a failing background skips every scenario by default"""
        feature = Feature(
            "F",
            background=Scenario("bg", steps=[Step("Given", "a failing step")], kind=ScenarioKind.BACKGROUND),
            scenarios=[scenario("one", "a passing step"), scenario("two", "a passing step")],
        )
        executor = build(registry, hooks, RunnerConfig())

        result = await executor.execute(feature)

        assert result.background.failed is True
        assert all(s.skipped_reason == "Background failed" for s in result.scenarios)
        assert result.status is FeatureStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_failed_background_can_be_ignored(self, registry, hooks):
        """Test continuing past a failed background"""
        feature = Feature(
            "F",
            background=Scenario("bg", steps=[Step("Given", "a failing step")], kind=ScenarioKind.BACKGROUND),
            scenarios=[scenario("one", "a passing step")],
        )
        executor = build(registry, hooks, RunnerConfig(continue_on_background_failure=True))

        result = await executor.execute(feature)

        assert result.scenarios[0].status is ScenarioStatus.PASSED
        assert len(result.scenarios[0].steps) == 1

    @pytest.mark.asyncio
    async def test_failed_background_can_abort(self, registry, hooks):
        """Test aborting the run on background failure"""
        after_feature = Mock(return_value=None)
        hooks.register(HookType.AFTER_FEATURE, after_feature, name="after_feature")
        feature = Feature(
            "F",
            background=Scenario("bg", steps=[Step("Given", "a failing step")], kind=ScenarioKind.BACKGROUND),
            scenarios=[scenario("one", "a passing step")],
        )
        executor = build(registry, hooks, RunnerConfig(abort_on_background_failure=True))

        with pytest.raises(BackgroundFailedError):
            await executor.execute(feature)
        after_feature.assert_called_once()

    @pytest.mark.asyncio
    async def test_feature_hooks(self, registry, hooks):
        """Test feature hooks wrap the scenarios and after hooks run in reverse"""
        calls = []
        hooks.register(HookType.BEFORE_FEATURE, lambda ctx: calls.append(("before", ctx.feature_name)), name="b")
        hooks.register(HookType.AFTER_FEATURE, lambda ctx: calls.append("after1"), name="a1", order=1)
        hooks.register(HookType.AFTER_FEATURE, lambda ctx: calls.append("after2"), name="a2", order=2)
        executor = build(registry, hooks, RunnerConfig())

        await executor.execute(Feature("F", scenarios=[scenario("s", "a passing step")]))

        assert calls == [("before", "F"), "after2", "after1"]

    @pytest.mark.asyncio
    async def test_after_feature_failure_is_recorded(self, registry, hooks):
        """Test a failing AfterFeature hook never fails the feature"""
        def broken(ctx):
            raise RuntimeError("cleanup")

        hooks.register(HookType.AFTER_FEATURE, broken, name="broken")
        executor = build(registry, hooks, RunnerConfig())

        result = await executor.execute(Feature("F", scenarios=[scenario("s", "a passing step")]))

        assert result.status is FeatureStatus.PASSED
        assert result.errors[0].type is ErrorType.TEARDOWN

    @pytest.mark.asyncio
    async def test_before_feature_failure_skips_when_configured(self, registry, hooks):
        """Test a failing BeforeFeature hook with continuation off"""
        def broken(ctx):
            raise RuntimeError("no env")

        hooks.register(HookType.BEFORE_FEATURE, broken, name="broken")
        executor = build(registry, hooks, RunnerConfig(continue_on_hook_failure=False))

        result = await executor.execute(Feature("F", scenarios=[scenario("s", "a passing step")]))

        assert result.scenarios[0].skipped_reason == "Before feature hook failed"
        assert result.errors[0].type is ErrorType.SETUP

    @pytest.mark.asyncio
    async def test_scenario_timeout(self, registry, hooks):
        """Test a scenario exceeding its timeout"""
        feature = Feature("F", scenarios=[scenario("slow", "I wait 500ms")])
        executor = build(registry, hooks, RunnerConfig(scenario_timeout=20))

        result = await executor.execute(feature)

        assert result.scenarios[0].status is ScenarioStatus.FAILED
        assert result.scenarios[0].error.type is ErrorType.TIMEOUT
        assert result.scenarios[0].error.message == "Scenario 'slow' timed out after 20ms"

    @pytest.mark.asyncio
    async def test_sink_receives_feature(self, registry, hooks):
        """Test the sink gets the finished feature"""
        sink = Mock()
        executor = build(registry, hooks, RunnerConfig(), sink)

        result = await executor.execute(Feature("F", scenarios=[scenario("s", "a passing step")]))

        sink.feature_finished.assert_called_once_with(result)
        sink.scenario_finished.assert_called_once()

    def test_invalid_tag_expression(self, registry, hooks):
        """Test a broken selection expression is a configuration error"""
        with pytest.raises(ConfigurationError):
            build(registry, hooks, RunnerConfig(tag_expression="@a and"))


class TestFeatureContext:
    """Test FeatureContext"""

    def test_isolated_copy(self):
        """Test parallel workers get a shallow copy of shared data"""
        context = FeatureContext(shared_data={'token': 'abc'})

        copy = context.isolated_copy()
        copy.shared_data['token'] = 'changed'

        assert context.shared_data['token'] == 'abc'

    def test_scenario_context_lookup(self):
        """Test data lookup falls back to row values then shared data"""
        context = FeatureContext(shared_data={'env': 'dev', 'user': 'shared'})
        scenario_context = context.create_scenario_context(scenario("S"), ["@a"], {'user': 'row'})

        assert scenario_context.get_data('user') == 'row'
        assert scenario_context.get_data('env') == 'dev'
        scenario_context.store_data('user', 'stored')
        assert scenario_context.get_data('user') == 'stored'
        assert scenario_context.get_data('missing', 1) == 1
