"""Execution result records shared by the hook, step, scenario and feature executors."""
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNDEFINED = "undefined"
    AMBIGUOUS = "ambiguous"


class ScenarioStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class FeatureStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorType(Enum):
    SETUP = "setup"
    EXECUTION = "execution"
    TEARDOWN = "teardown"
    TIMEOUT = "timeout"
    ASSERTION = "assertion"
    SYSTEM = "system"


@dataclass
class ExecutionError:
    """What went wrong, where, and when"""
    type: ErrorType
    message: str
    stack: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_exception(
            cls,
            error: BaseException,
            error_type: Optional[ErrorType] = None,
            context: Optional[Dict[str, Any]] = None
    ) -> "ExecutionError":
        if error_type is None:
            error_type = ErrorType.ASSERTION if isinstance(error, AssertionError) else ErrorType.EXECUTION
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return cls(
            type=error_type,
            message=str(error) or error.__class__.__name__,
            stack=stack,
            context=context or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'message': self.message,
            'stack': self.stack,
            'context': {k: str(v) for k, v in self.context.items()},
            'timestamp': self.timestamp.isoformat(),
        }


def _duration_ms(start: Optional[datetime], end: Optional[datetime]) -> float:
    if start is None or end is None:
        return 0.0
    return (end - start).total_seconds() * 1000


@dataclass
class HookResult:
    hook_name: str
    hook_type: str
    status: StepStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    error: Optional[ExecutionError] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def duration(self) -> float:
        return _duration_ms(self.start_time, self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hook': self.hook_name,
            'type': self.hook_type,
            'status': self.status.value,
            'duration': self.duration,
            'error': self.error.to_dict() if self.error else None,
        }


@dataclass
class StepResult:
    keyword: str
    text: str
    status: StepStatus
    line: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # ms
    error: Optional[ExecutionError] = None
    skipped_reason: Optional[str] = None
    screenshot: Optional[str] = None
    hook_results: List[HookResult] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.keyword} {self.text}"

    def finish(self, status: StepStatus, error: Optional[ExecutionError] = None) -> "StepResult":
        self.status = status
        self.error = error
        self.end_time = datetime.now()
        self.duration = _duration_ms(self.start_time, self.end_time)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'keyword': self.keyword,
            'text': self.text,
            'line': self.line,
            'status': self.status.value,
            'duration': self.duration,
            'error': self.error.to_dict() if self.error else None,
            'skipped_reason': self.skipped_reason,
            'screenshot': self.screenshot,
        }


@dataclass
class ScenarioResult:
    name: str
    status: ScenarioStatus = ScenarioStatus.PENDING
    tags: List[str] = field(default_factory=list)
    steps: List[StepResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # ms
    error: Optional[ExecutionError] = None
    retries: int = 0
    skipped_reason: Optional[str] = None
    hook_results: List[HookResult] = field(default_factory=list)
    teardown_errors: List[ExecutionError] = field(default_factory=list)
    test_data: Optional[Dict[str, Any]] = None
    line: int = 0
    instances: List["ScenarioResult"] = field(default_factory=list)

    def finish(self) -> "ScenarioResult":
        self.end_time = datetime.now()
        self.duration = _duration_ms(self.start_time, self.end_time)
        return self

    @classmethod
    def skipped(cls, name: str, tags: List[str], reason: str, line: int = 0) -> "ScenarioResult":
        now = datetime.now()
        return cls(
            name=name,
            status=ScenarioStatus.SKIPPED,
            tags=list(tags),
            start_time=now,
            end_time=now,
            skipped_reason=reason,
            line=line,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'status': self.status.value,
            'tags': self.tags,
            'line': self.line,
            'duration': self.duration,
            'retries': self.retries,
            'skipped_reason': self.skipped_reason,
            'error': self.error.to_dict() if self.error else None,
            'steps': [step.to_dict() for step in self.steps],
            'hooks': [hook.to_dict() for hook in self.hook_results],
            'teardown_errors': [error.to_dict() for error in self.teardown_errors],
            'test_data': self.test_data,
            'instances': [instance.to_dict() for instance in self.instances],
        }


@dataclass
class BackgroundResult:
    name: str
    steps: List[StepResult] = field(default_factory=list)
    failed: bool = False
    error: Optional[ExecutionError] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'failed': self.failed,
            'duration': self.duration,
            'error': self.error.to_dict() if self.error else None,
            'steps': [step.to_dict() for step in self.steps],
        }


@dataclass
class FeatureMetrics:
    total_scenarios: int = 0
    passed_scenarios: int = 0
    failed_scenarios: int = 0
    skipped_scenarios: int = 0
    error_scenarios: int = 0
    total_steps: int = 0
    passed_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    average_scenario_duration: float = 0.0
    average_step_duration: float = 0.0
    fastest_scenario: Optional[Dict[str, Any]] = None
    slowest_scenario: Optional[Dict[str, Any]] = None
    error_rate: float = 0.0
    success_rate: float = 0.0
    tag_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class FeatureResult:
    name: str
    status: FeatureStatus = FeatureStatus.PENDING
    uri: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    description: str = ""
    background: Optional[BackgroundResult] = None
    scenarios: List[ScenarioResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0
    hook_results: List[HookResult] = field(default_factory=list)
    errors: List[ExecutionError] = field(default_factory=list)
    metrics: FeatureMetrics = field(default_factory=FeatureMetrics)

    def finish(self) -> "FeatureResult":
        self.end_time = datetime.now()
        self.duration = _duration_ms(self.start_time, self.end_time)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'uri': self.uri,
            'status': self.status.value,
            'tags': self.tags,
            'description': self.description,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration': self.duration,
            'background': self.background.to_dict() if self.background else None,
            'scenarios': [scenario.to_dict() for scenario in self.scenarios],
            'hooks': [hook.to_dict() for hook in self.hook_results],
            'errors': [error.to_dict() for error in self.errors],
            'metrics': self.metrics.to_dict(),
        }


@dataclass
class RunResult:
    """Everything one run produced"""
    features: List[FeatureResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    hook_results: List[HookResult] = field(default_factory=list)
    hook_statistics: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return _duration_ms(self.start_time, self.end_time)

    @property
    def success(self) -> bool:
        return all(feature.status is not FeatureStatus.FAILED for feature in self.features)

    @property
    def summary(self) -> Dict[str, Any]:
        scenarios = [scenario for feature in self.features for scenario in feature.scenarios]
        return {
            'features': {
                'total': len(self.features),
                'passed': sum(1 for f in self.features if f.status is FeatureStatus.PASSED),
                'failed': sum(1 for f in self.features if f.status is FeatureStatus.FAILED),
                'skipped': sum(1 for f in self.features if f.status is FeatureStatus.SKIPPED),
            },
            'scenarios': {
                'total': len(scenarios),
                'passed': sum(1 for s in scenarios if s.status is ScenarioStatus.PASSED),
                'failed': sum(1 for s in scenarios if s.status is ScenarioStatus.FAILED),
                'error': sum(1 for s in scenarios if s.status is ScenarioStatus.ERROR),
                'skipped': sum(1 for s in scenarios if s.status is ScenarioStatus.SKIPPED),
            },
            'duration': self.duration,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'features': [feature.to_dict() for feature in self.features],
            'hooks': [hook.to_dict() for hook in self.hook_results],
            'hook_statistics': self.hook_statistics,
        }
