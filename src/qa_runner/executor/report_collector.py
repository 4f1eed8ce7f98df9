import json
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Any, Optional
import logging

from ..core.base import ReportingSink
from ..core.results import FeatureResult, ScenarioResult, StepResult, StepStatus

logger = logging.getLogger(__name__)


class ReportCollector(ReportingSink):
    """Collects finished results and writes them out as JSON"""

    def __init__(self, output_dir: str = "test-results"):
        self.output_dir = Path(output_dir)
        self.features: List[FeatureResult] = []
        self.scenarios: List[ScenarioResult] = []
        self.step_counts: Dict[str, int] = {status.value: 0 for status in StepStatus}
        self.hook_stats: Dict[str, Any] = {}

    def step_finished(self, result: StepResult) -> None:
        self.step_counts[result.status.value] += 1

    def scenario_finished(self, result: ScenarioResult) -> None:
        self.scenarios.append(result)

    def feature_finished(self, result: FeatureResult) -> None:
        self.features.append(result)

    def hook_statistics(self, statistics: Dict[str, Any]) -> None:
        self.hook_stats = statistics

    def summary(self) -> Dict[str, Any]:
        """Counts across everything collected so far"""
        scenario_counts: Dict[str, int] = {}
        for scenario in self.scenarios:
            scenario_counts[scenario.status.value] = scenario_counts.get(scenario.status.value, 0) + 1

        feature_counts: Dict[str, int] = {}
        for feature in self.features:
            feature_counts[feature.status.value] = feature_counts.get(feature.status.value, 0) + 1

        return {
            'features': {'total': len(self.features), **feature_counts},
            'scenarios': {'total': len(self.scenarios), **scenario_counts},
            'steps': {'total': sum(self.step_counts.values()), **self.step_counts},
        }

    def generate_report(self, results: Optional[Dict[str, Any]] = None, format: str = "json") -> str:
        """
        Write collected results to disk

        Args:
            results: Extra data to include, e.g. a run summary
            format: Only "json" is supported

        Returns:
            Path to generated report
        """
        if format != "json":
            raise ValueError(f"Unsupported report format: {format}")

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        return self._generate_json_report(results or {}, timestamp)

    def _generate_json_report(self, results: Dict[str, Any], timestamp: str) -> str:
        """Generate JSON report"""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        report_path = self.output_dir / f"report_{timestamp}.json"

        report = {
            'generated_at': datetime.now().isoformat(),
            'summary': self.summary(),
            'features': [feature.to_dict() for feature in self.features],
            'hook_statistics': self.hook_stats,
            **results,
        }

        with open(report_path, 'w') as f:
            json.dump(report, f, indent=2, default=str)

        logger.info(f"JSON report generated: {report_path}")
        return str(report_path)
