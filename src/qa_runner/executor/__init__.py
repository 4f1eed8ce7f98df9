from .runner import FeatureRunner
from .feature_executor import FeatureExecutor, calculate_metrics, determine_feature_status
from .scenario_executor import (
    ScenarioExecutor,
    determine_scenario_status,
    merge_scenario_results,
    skip_reason,
)
from .step_executor import StepExecutor, coerce_argument
from .step_definitions import StepDefinitionRegistry, given, when, then, step
from .context import FeatureContext, ScenarioContext, RunContext
from .data_provider import DataSource, FileDataProvider, data_source_from_tags
from .report_collector import ReportCollector

__all__ = [
    'FeatureRunner',
    'FeatureExecutor',
    'ScenarioExecutor',
    'StepExecutor',
    'StepDefinitionRegistry',
    'FeatureContext',
    'ScenarioContext',
    'RunContext',
    'DataSource',
    'FileDataProvider',
    'ReportCollector',
    'calculate_metrics',
    'coerce_argument',
    'data_source_from_tags',
    'determine_feature_status',
    'determine_scenario_status',
    'merge_scenario_results',
    'skip_reason',
    'given',
    'when',
    'then',
    'step',
]
