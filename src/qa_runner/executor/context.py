from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
import logging

from ..core.base import ResourceContext
from ..core.config import RunnerConfig
from ..gherkin.models import Feature, Scenario, Step

logger = logging.getLogger(__name__)


@dataclass
class ScenarioContext:
    """
    Runtime context handed to hooks and step functions for one scenario attempt
    Holds the acquired resources, data-driven row values and scratch data
    """
    scenario_name: str
    feature_name: str = ""
    tags: List[str] = field(default_factory=list)
    config: RunnerConfig = field(default_factory=RunnerConfig)
    shared_data: Dict[str, Any] = field(default_factory=dict)
    test_data: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    resources: Any = None
    resource_context: Optional[ResourceContext] = None
    current_step: Optional[Step] = None

    def store_data(self, key: str, value: Any):
        """Store data for use in later steps"""
        self.data[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        """Retrieve stored data, falling back to row values and shared feature data"""
        if key in self.data:
            return self.data[key]
        if key in self.test_data:
            return self.test_data[key]
        return self.shared_data.get(key, default)

    @property
    def page(self) -> Any:
        """Browser page when the resources carry one"""
        if isinstance(self.resources, dict):
            return self.resources.get('page')
        return getattr(self.resources, 'page', None)

    async def take_screenshot(self, name: str = "screenshot") -> Optional[str]:
        """Take a screenshot through the resource context and return the path"""
        if self.resource_context is None:
            return None
        return await self.resource_context.screenshot(name)


@dataclass
class FeatureContext:
    """State shared by the scenarios of one feature"""
    feature: Optional[Feature] = None
    config: RunnerConfig = field(default_factory=RunnerConfig)
    shared_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def feature_name(self) -> str:
        return self.feature.name if self.feature else ""

    def isolated_copy(self) -> "FeatureContext":
        """Shallow copy of the shared data for a parallel worker"""
        return FeatureContext(
            feature=self.feature,
            config=self.config,
            shared_data=dict(self.shared_data),
        )

    def create_scenario_context(
            self,
            scenario: Scenario,
            tags: Optional[List[str]] = None,
            test_data: Optional[Dict[str, Any]] = None
    ) -> ScenarioContext:
        return ScenarioContext(
            scenario_name=scenario.name,
            feature_name=self.feature_name,
            tags=list(tags if tags is not None else scenario.tags),
            config=self.config,
            shared_data=self.shared_data,
            test_data=dict(test_data or {}),
        )


@dataclass
class RunContext:
    """Context handed to BeforeAll and AfterAll hooks"""
    config: RunnerConfig = field(default_factory=RunnerConfig)
    shared_data: Dict[str, Any] = field(default_factory=dict)
    features: List[Feature] = field(default_factory=list)
