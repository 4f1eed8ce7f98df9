import re
import inspect
from typing import Dict, List, Callable, Pattern, Optional, Any, Union
from dataclasses import dataclass
import logging

from ..core.base import StepActionProvider, run_callable
from ..core.exceptions import AmbiguousStepError

logger = logging.getLogger(__name__)

GENERIC_KEYWORD = 'step'


@dataclass
class StepDefinition:
    """Represents a step definition with its pattern and function"""
    keyword: str  # given, when, then, or step for any keyword
    pattern: Pattern
    function: Callable
    description: str = ""

    def match(self, step_text: str) -> Optional["re.Match"]:
        """Match the whole step text against the pattern"""
        return self.pattern.fullmatch(step_text.strip())

    def accepts(self, keyword: str) -> bool:
        return self.keyword == GENERIC_KEYWORD or self.keyword == keyword


class StepDefinitionRegistry(StepActionProvider):
    """Registry for step definitions"""

    def __init__(self):
        self.definitions: List[StepDefinition] = []

    def add_definition(self, keyword: str, pattern: Union[str, Pattern], function: Callable, description: str = ""):
        """Add a step definition to registry"""
        # Compile pattern if it's a string
        if isinstance(pattern, str):
            pattern = re.compile(pattern, re.IGNORECASE)

        definition = StepDefinition(
            keyword=keyword.lower(),
            pattern=pattern,
            function=function,
            description=description
        )

        self.definitions.append(definition)
        logger.debug(f"Registered step: {keyword} {pattern.pattern}")
        return definition

    def _decorator(self, keyword: str, pattern: str, description: str):
        def decorator(func):
            self.add_definition(keyword, pattern, func, description)
            return func

        return decorator

    def given(self, pattern: str, description: str = ""):
        """Decorator for Given steps"""
        return self._decorator('given', pattern, description)

    def when(self, pattern: str, description: str = ""):
        """Decorator for When steps"""
        return self._decorator('when', pattern, description)

    def then(self, pattern: str, description: str = ""):
        """Decorator for Then steps"""
        return self._decorator('then', pattern, description)

    def step(self, pattern: str, description: str = ""):
        """Decorator for steps matching any keyword"""
        return self._decorator(GENERIC_KEYWORD, pattern, description)

    def resolve(self, keyword: str, step_text: str) -> Optional[StepDefinition]:
        """
        Find the definition for ``keyword step_text``

        Raises:
            AmbiguousStepError: more than one distinct definition matches
        """
        keyword = keyword.lower().strip()
        matches = [
            definition for definition in self.definitions
            if definition.accepts(keyword) and definition.match(step_text)
        ]

        if not matches:
            logger.debug(f"No step definition found for: {keyword} {step_text}")
            return None

        distinct = {(d.pattern.pattern, d.function) for d in matches}
        if len(distinct) > 1:
            raise AmbiguousStepError(step_text, [d.pattern.pattern for d in matches])

        logger.debug(f"Found matching step definition: {matches[0].pattern.pattern}")
        return matches[0]

    async def invoke(self, definition: StepDefinition, args: List[Any], context: Any) -> Any:
        """Call the step function as ``function(context, *args)``"""
        return await run_callable(definition.function, context, *args)

    def list_definitions(self) -> List[Dict[str, str]]:
        """List all registered step definitions"""
        return [
            {
                'keyword': defn.keyword,
                'pattern': defn.pattern.pattern,
                'description': defn.description,
                'function': defn.function.__name__
            }
            for defn in self.definitions
        ]

    def clear(self):
        """Clear all registered definitions"""
        self.definitions.clear()

    def register_from_module(self, module) -> int:
        """Register all step definitions from a module"""
        registered = 0
        for name, obj in inspect.getmembers(module):
            for step_info in getattr(obj, '_step_definitions', []):
                self.add_definition(
                    step_info['keyword'],
                    step_info['pattern'],
                    obj,
                    step_info.get('description', '')
                )
                registered += 1
        return registered


# Utility decorators for marking functions as step definitions
def _mark(keyword: str, pattern: str, description: str):
    def decorator(func):
        if not hasattr(func, '_step_definitions'):
            func._step_definitions = []
        func._step_definitions.append({
            'keyword': keyword,
            'pattern': pattern,
            'description': description
        })
        return func

    return decorator


def given(pattern: str, description: str = ""):
    """Mark function as a Given step"""
    return _mark('given', pattern, description)


def when(pattern: str, description: str = ""):
    """Mark function as a When step"""
    return _mark('when', pattern, description)


def then(pattern: str, description: str = ""):
    """Mark function as a Then step"""
    return _mark('then', pattern, description)


def step(pattern: str, description: str = ""):
    """Mark function as a step for any keyword"""
    return _mark(GENERIC_KEYWORD, pattern, description)
