import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.base import ReportingSink
from ..core.config import RunnerConfig
from ..core.results import ErrorType, ExecutionError, FeatureResult, FeatureStatus, RunResult
from ..gherkin.models import Feature
from ..gherkin.parser import parse_feature_file
from ..hooks.executor import HookExecutor, first_failure
from ..hooks.models import HookType
from ..hooks.registry import HookRegistry
from .context import RunContext
from .data_provider import FileDataProvider
from .feature_executor import FeatureExecutor
from .report_collector import ReportCollector
from .scenario_executor import ResourceFactory, ScenarioExecutor
from .step_definitions import StepDefinitionRegistry
from .step_executor import StepExecutor

logger = logging.getLogger(__name__)


class FeatureRunner:
    """
    Runs feature files end to end
    Wires the step registry, hook registry and executors together for one run
    """

    def __init__(
            self,
            config: Union[RunnerConfig, Dict[str, Any], None] = None,
            step_registry: Optional[StepDefinitionRegistry] = None,
            hook_registry: Optional[HookRegistry] = None,
            resource_factory: Optional[ResourceFactory] = None,
            sink: Optional[ReportingSink] = None,
            data_provider: Optional[FileDataProvider] = None
    ):
        if isinstance(config, dict):
            config = RunnerConfig.from_dict(config)
        self.config = config or RunnerConfig()
        self.step_registry = step_registry or StepDefinitionRegistry()
        self.hook_registry = hook_registry or HookRegistry()
        self.resource_factory = resource_factory
        self.sink = sink or ReportCollector()
        self.data_provider = data_provider
        self.shared_data: Dict[str, Any] = {}

    def load_feature(self, feature_path: Union[str, Path]) -> Feature:
        """Parse a feature file, raising FeatureParseError with every structural error"""
        return parse_feature_file(feature_path)

    def _build_executors(self):
        hook_executor = HookExecutor(self.hook_registry, self.config.hook_timeout)
        step_executor = StepExecutor(self.step_registry, hook_executor, self.config, self.sink)
        scenario_executor = ScenarioExecutor(
            step_executor,
            hook_executor,
            self.config,
            resource_factory=self.resource_factory,
            data_provider=self.data_provider,
            sink=self.sink,
        )
        feature_executor = FeatureExecutor(scenario_executor, hook_executor, self.config, self.sink)
        return hook_executor, feature_executor

    async def run(self, features: Iterable[Union[Feature, str, Path]]) -> RunResult:
        """
        Execute features one after another

        Args:
            features: Parsed features or paths to .feature files

        Returns:
            RunResult with every FeatureResult and the hook statistics
        """
        loaded = [f if isinstance(f, Feature) else self.load_feature(f) for f in features]

        validation = self.hook_registry.validate()
        if not validation['valid']:
            logger.warning(f"Hook registry has {len(validation['errors'])} configuration error(s)")

        hook_executor, feature_executor = self._build_executors()
        run = RunResult(start_time=datetime.now())
        run_context = RunContext(config=self.config, shared_data=self.shared_data, features=loaded)

        self.hook_registry.lock()
        try:
            async with AsyncExitStack() as stack:
                if hasattr(self.resource_factory, '__aenter__'):
                    await stack.enter_async_context(self.resource_factory)

                before_all = await hook_executor.execute_hooks(HookType.BEFORE_ALL, run_context)
                run.hook_results.extend(before_all)
                failed_hook = first_failure(before_all)

                try:
                    for feature in loaded:
                        if self._should_stop(run, failed_hook):
                            run.features.append(self._skipped_feature(feature, failed_hook))
                            continue
                        run.features.append(await feature_executor.execute(feature, self.shared_data))
                finally:
                    after_all = await hook_executor.execute_hooks(HookType.AFTER_ALL, run_context)
                    run.hook_results.extend(after_all)
        finally:
            self.hook_registry.unlock()
            run.end_time = datetime.now()
            run.hook_statistics = hook_executor.get_execution_report()
            self.sink.hook_statistics(run.hook_statistics)

        logger.info(f"Run completed: {run.summary['scenarios']}")
        return run

    def _should_stop(self, run: RunResult, failed_hook) -> bool:
        if failed_hook is not None and not self.config.continue_on_hook_failure:
            return True
        return self.config.stop_on_first_failure and any(
            feature.status is FeatureStatus.FAILED for feature in run.features
        )

    def _skipped_feature(self, feature: Feature, failed_hook) -> FeatureResult:
        reason = "BeforeAll hook failed" if failed_hook is not None else "Previous feature failed"
        now = datetime.now()
        result = FeatureResult(
            name=feature.name,
            status=FeatureStatus.SKIPPED,
            uri=feature.uri,
            tags=list(feature.tags),
            start_time=now,
            end_time=now,
        )
        result.errors.append(ExecutionError(ErrorType.SETUP, reason, context={'feature': feature.name}))
        self.sink.feature_finished(result)
        return result

    def execute(self, input_data: Dict[str, Any]) -> RunResult:
        """
        Execute feature files

        Args:
            input_data: Dict with 'feature_path' or 'feature_dir'

        Returns:
            Execution results
        """
        feature_path = input_data.get('feature_path')
        feature_dir = input_data.get('feature_dir', 'features/')

        if feature_path:
            # Execute single feature
            return asyncio.run(self.run([feature_path]))
        else:
            # Execute all features in directory
            return self.execute_directory(feature_dir)

    def execute_directory(self, feature_dir: Union[str, Path]) -> RunResult:
        """Execute all feature files in a directory"""
        feature_dir = Path(feature_dir)

        if not feature_dir.exists():
            raise FileNotFoundError(f"Feature directory not found: {feature_dir}")

        feature_files: List[Path] = sorted(feature_dir.glob('**/*.feature'))
        logger.info(f"Found {len(feature_files)} feature file(s) in {feature_dir}")
        return asyncio.run(self.run(feature_files))
