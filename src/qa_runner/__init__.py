"""
QA Runner - BDD execution core: Gherkin tokenizer, lifecycle hooks and scenario scheduling
"""

__version__ = "0.1.0"
__author__ = "QA Runner Contributors"

from .core import ConfigManager, RunnerConfig
from .gherkin import parse_feature, parse_feature_file, tokenize
from .hooks import HookRegistry, HookType
from .executor import FeatureRunner, StepDefinitionRegistry

__all__ = [
    "ConfigManager",
    "RunnerConfig",
    "FeatureRunner",
    "HookRegistry",
    "HookType",
    "StepDefinitionRegistry",
    "parse_feature",
    "parse_feature_file",
    "tokenize",
]
