from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

DEFAULT_HOOK_ORDER = 100


class HookType(Enum):
    """Lifecycle point a hook is bound to"""
    BEFORE_ALL = "BeforeAll"
    AFTER_ALL = "AfterAll"
    BEFORE_FEATURE = "BeforeFeature"
    AFTER_FEATURE = "AfterFeature"
    BEFORE = "Before"
    AFTER = "After"
    BEFORE_STEP = "BeforeStep"
    AFTER_STEP = "AfterStep"

    @property
    def is_teardown(self) -> bool:
        """Teardown chains keep running past a failing hook"""
        return self in (HookType.AFTER, HookType.AFTER_STEP, HookType.AFTER_FEATURE, HookType.AFTER_ALL)

    @property
    def is_run_level(self) -> bool:
        """Run-level hooks stay registrable while the registry is locked"""
        return self in (HookType.BEFORE_ALL, HookType.AFTER_ALL)


@dataclass
class Hook:
    """A registered lifecycle callback"""
    type: HookType
    function: Callable
    name: str
    order: int = DEFAULT_HOOK_ORDER
    tags: List[str] = field(default_factory=list)
    timeout: Optional[int] = None  # ms, executor default when None
    always_run: bool = False
    condition: Optional[Callable[[], bool]] = None
    description: str = ""

    @property
    def id(self) -> str:
        return f"{self.type.value}:{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'name': self.name,
            'order': self.order,
            'tags': list(self.tags),
            'timeout': self.timeout,
            'always_run': self.always_run,
            'conditional': self.condition is not None,
            'function': getattr(self.function, '__name__', repr(self.function)),
            'description': self.description,
        }


@dataclass
class HookStats:
    """Running execution statistics for one hook id"""
    executions: int = 0
    total_duration: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    last_execution: Optional[str] = None

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.executions if self.executions else 0.0

    def record(self, duration: float, success: bool, finished_at: str) -> None:
        self.executions += 1
        self.total_duration += duration
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1
        self.last_execution = finished_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'executions': self.executions,
            'total_duration': self.total_duration,
            'average_duration': self.average_duration,
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'last_execution': self.last_execution,
        }
