import asyncio
import time

import pytest
from unittest.mock import AsyncMock, Mock
from qa_runner.core.config import RunnerConfig
from qa_runner.core.exceptions import StepPending, StepSkipped
from qa_runner.core.results import ErrorType, StepStatus
from qa_runner.executor.context import ScenarioContext
from qa_runner.executor.step_definitions import StepDefinitionRegistry
from qa_runner.executor.step_executor import StepExecutor, coerce_argument
from qa_runner.gherkin.models import DataTable, DocString, Step
from qa_runner.hooks import HookExecutor, HookRegistry, HookType


class TestCoerceArgument:
    """Test argument coercion"""

    @pytest.mark.parametrize("raw,expected", [
        ("42", 42),
        ("-7", -7),
        ("3.14", 3.14),
        ("true", True),
        ("False", False),
        ("null", None),
        ("undefined", None),
        ('{"a": 1}', {"a": 1}),
        ("[1, 2]", [1, 2]),
        ('"quoted"', "quoted"),
        ("'single'", "single"),
        ("plain text", "plain text"),
        ("{not json", "{not json"),
    ])
    def test_coercion_order(self, raw, expected):
        """Test each preference in turn"""
        assert coerce_argument(raw) == expected

    def test_non_strings_untouched(self):
        """Test already converted values pass through"""
        table = DataTable([["a"]])
        assert coerce_argument(table) is table


class TestStepExecutor:
    """Test StepExecutor"""

    @pytest.fixture
    def registry(self):
        return StepDefinitionRegistry()

    @pytest.fixture
    def hooks(self):
        return HookRegistry()

    @pytest.fixture
    def config(self):
        return RunnerConfig(step_timeout=1000)

    @pytest.fixture
    def executor(self, registry, hooks, config):
        return StepExecutor(registry, HookExecutor(hooks), config)

    @pytest.fixture
    def context(self):
        return ScenarioContext(scenario_name="S")

    @pytest.mark.asyncio
    async def test_passing_step_with_coerced_args(self, registry, executor, context):
        """Test a passing step receives typed arguments"""
        received = {}

        @registry.given(r'I have (\d+) items costing (\S+)')
        def items(ctx, count, price):
            received.update(count=count, price=price)

        result = await executor.execute(Step("Given", "I have 3 items costing 2.5", line=4), context)

        assert result.status is StepStatus.PASSED
        assert result.line == 4
        assert result.duration >= 0
        assert received == {"count": 3, "price": 2.5}
        assert context.current_step.text == "I have 3 items costing 2.5"

    @pytest.mark.asyncio
    async def test_undefined_step(self, executor, context):
        """Test a step without definition"""
        result = await executor.execute(Step("When", "nothing matches"), context)

        assert result.status is StepStatus.UNDEFINED
        assert result.error.message == "No step definition found for: When nothing matches"

    @pytest.mark.asyncio
    async def test_ambiguous_step(self, registry, executor, context):
        """Test several matching definitions"""
        registry.add_definition('given', r'a (.*)', lambda ctx, x: None)
        registry.add_definition('given', r'(.*) thing', lambda ctx, x: None)

        result = await executor.execute(Step("Given", "a thing"), context)

        assert result.status is StepStatus.AMBIGUOUS

    @pytest.mark.asyncio
    async def test_conjunction_falls_back_to_primary_keywords(self, registry, executor, context):
        """Test And resolves against Given, When and Then"""
        called = Mock(return_value=None)
        registry.add_definition('then', r'the total is (\d+)', called)

        result = await executor.execute(Step("And", "the total is 10"), context)

        assert result.status is StepStatus.PASSED
        called.assert_called_once_with(context, 10)

    @pytest.mark.asyncio
    async def test_primary_keyword_does_not_fall_back(self, registry, executor, context):
        """Test Given never resolves a Then definition"""
        registry.add_definition('then', r'done', lambda ctx: None)

        result = await executor.execute(Step("Given", "done"), context)

        assert result.status is StepStatus.UNDEFINED

    @pytest.mark.asyncio
    async def test_data_table_argument(self, registry, executor, context):
        """Test the table is appended as the last argument"""
        received = []
        registry.add_definition('given', r'users:', lambda ctx, table: received.append(table))
        table = DataTable([["name"], ["ann"]])

        await executor.execute(Step("Given", "users:", data_table=table), context)

        assert received[0].hashes() == [{"name": "ann"}]

    @pytest.mark.asyncio
    async def test_doc_string_argument(self, registry, executor, context):
        """Test the doc string content is appended"""
        received = []
        registry.add_definition('given', r'body', lambda ctx, text: received.append(text))

        await executor.execute(Step("Given", "body", doc_string=DocString("hello")), context)

        assert received == ["hello"]

    @pytest.mark.asyncio
    async def test_assertion_failure(self, registry, executor, context):
        """Test an assertion error fails the step"""
        def check(ctx):
            assert 1 == 2, "numbers differ"

        registry.add_definition('then', r'check', check)

        result = await executor.execute(Step("Then", "check"), context)

        assert result.status is StepStatus.FAILED
        assert result.error.type is ErrorType.ASSERTION
        assert "numbers differ" in result.error.message
        assert result.error.stack

    @pytest.mark.asyncio
    async def test_pending_and_skipped(self, registry, executor, context):
        """Test explicit pending and skipped markers"""
        def pending(ctx):
            raise StepPending("not written yet")

        def skipped(ctx):
            raise StepSkipped("feature flag off")

        registry.add_definition('given', r'pending', pending)
        registry.add_definition('given', r'skipped', skipped)

        pending_result = await executor.execute(Step("Given", "pending"), context)
        skipped_result = await executor.execute(Step("Given", "skipped"), context)

        assert pending_result.status is StepStatus.PENDING
        assert skipped_result.status is StepStatus.SKIPPED
        assert skipped_result.skipped_reason == "feature flag off"

    @pytest.mark.asyncio
    async def test_timeout(self, registry, context, hooks):
        """Test a slow step times out"""
        async def slow(ctx):
            await asyncio.sleep(1)

        registry.add_definition('when', r'I wait', slow)
        executor = StepExecutor(registry, HookExecutor(hooks), RunnerConfig(step_timeout=20))

        result = await executor.execute(Step("When", "I wait"), context)

        assert result.status is StepStatus.FAILED
        assert result.error.type is ErrorType.TIMEOUT
        assert result.error.message == "Step 'When I wait' timed out after 20ms"

    @pytest.mark.asyncio
    async def test_blocking_sync_step_times_out(self, registry, context, hooks):
        """Test a plain function that blocks past the step timeout is FAILED"""
        def blocking(ctx):
            time.sleep(0.3)

        registry.add_definition('when', r'I block', blocking)
        executor = StepExecutor(registry, HookExecutor(hooks), RunnerConfig(step_timeout=50))

        result = await executor.execute(Step("When", "I block"), context)

        assert result.status is StepStatus.FAILED
        assert result.error.type is ErrorType.TIMEOUT
        assert result.error.message == "Step 'When I block' timed out after 50ms"
        assert result.duration < 250

    @pytest.mark.asyncio
    async def test_step_hooks(self, registry, hooks, executor, context):
        """Test BeforeStep and AfterStep hooks wrap the step"""
        calls = []
        hooks.register(HookType.BEFORE_STEP, lambda ctx: calls.append("before"), name="before")
        hooks.register(HookType.AFTER_STEP, lambda ctx: calls.append("after"), name="after")
        registry.add_definition('given', r'x', lambda ctx: calls.append("step"))

        result = await executor.execute(Step("Given", "x"), context)

        assert calls == ["before", "step", "after"]
        assert len(result.hook_results) == 2

    @pytest.mark.asyncio
    async def test_failing_before_step_hook(self, registry, hooks, executor, context):
        """Test a failing BeforeStep hook fails the step without running it"""
        def broken(ctx):
            raise RuntimeError("no session")

        step_fn = Mock(return_value=None)
        hooks.register(HookType.BEFORE_STEP, broken, name="broken")
        registry.add_definition('given', r'x', step_fn)

        result = await executor.execute(Step("Given", "x"), context)

        assert result.status is StepStatus.FAILED
        assert result.error.type is ErrorType.SETUP
        step_fn.assert_not_called()

    @pytest.mark.asyncio
    async def test_screenshot_on_failure(self, registry, hooks, context):
        """Test screenshots are requested for failed steps only by default"""
        registry.add_definition('given', r'fails', Mock(side_effect=RuntimeError("x")))
        registry.add_definition('given', r'passes', Mock(return_value=None))
        resources = Mock()
        resources.screenshot = AsyncMock(return_value="shot.png")
        executor = StepExecutor(registry, HookExecutor(hooks), RunnerConfig())

        failed = await executor.execute(Step("Given", "fails", line=9), context, resources)
        passed = await executor.execute(Step("Given", "passes"), context, resources)

        assert failed.screenshot == "shot.png"
        assert passed.screenshot is None
        resources.screenshot.assert_awaited_once_with("step_9_failed")

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_advisory(self, registry, hooks, context):
        """Test a broken screenshot never changes the status"""
        registry.add_definition('given', r'fails', Mock(side_effect=RuntimeError("x")))
        resources = Mock()
        resources.screenshot = AsyncMock(side_effect=RuntimeError("no page"))
        executor = StepExecutor(registry, HookExecutor(hooks), RunnerConfig())

        result = await executor.execute(Step("Given", "fails"), context, resources)

        assert result.status is StepStatus.FAILED
        assert result.screenshot is None

    @pytest.mark.asyncio
    async def test_sink_notified(self, registry, hooks, context):
        """Test the reporting sink receives every step result"""
        sink = Mock()
        registry.add_definition('given', r'x', lambda ctx: None)
        executor = StepExecutor(registry, HookExecutor(hooks), RunnerConfig(), sink)

        result = await executor.execute(Step("Given", "x"), context)

        sink.step_finished.assert_called_once_with(result)
