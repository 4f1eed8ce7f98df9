from .base import (
    StepActionProvider,
    ResourceContext,
    NullResourceContext,
    ReportingSink,
    run_callable,
)
from .config import ConfigManager, RunnerConfig
from .results import (
    StepStatus,
    ScenarioStatus,
    FeatureStatus,
    ErrorType,
    ExecutionError,
    HookResult,
    StepResult,
    ScenarioResult,
    BackgroundResult,
    FeatureMetrics,
    FeatureResult,
    RunResult,
)
from .exceptions import (
    QARunnerError,
    ConfigurationError,
    ParseError,
    FeatureParseError,
    TagExpressionError,
    HookError,
    RegistryLockedError,
    StepDefinitionError,
    AmbiguousStepError,
    BackgroundFailedError,
    DataProviderError,
    StepPending,
    StepSkipped,
)

__all__ = [
    # Collaborator interfaces
    "StepActionProvider",
    "ResourceContext",
    "NullResourceContext",
    "ReportingSink",
    "run_callable",

    # Configuration
    "ConfigManager",
    "RunnerConfig",

    # Results
    "StepStatus",
    "ScenarioStatus",
    "FeatureStatus",
    "ErrorType",
    "ExecutionError",
    "HookResult",
    "StepResult",
    "ScenarioResult",
    "BackgroundResult",
    "FeatureMetrics",
    "FeatureResult",
    "RunResult",

    # Exceptions
    "QARunnerError",
    "ConfigurationError",
    "ParseError",
    "FeatureParseError",
    "TagExpressionError",
    "HookError",
    "RegistryLockedError",
    "StepDefinitionError",
    "AmbiguousStepError",
    "BackgroundFailedError",
    "DataProviderError",
    "StepPending",
    "StepSkipped",
]
