from typing import Any, Dict, List, Optional


class QARunnerError(Exception):
    """Base exception for QA Runner"""
    pass


class ConfigurationError(QARunnerError):
    """Configuration-related errors"""
    pass


class ParseError(QARunnerError):
    """Structural or lexical problem in feature text"""

    def __init__(self, message: str, line: int = 0, column: int = 0, file: Optional[str] = None):
        self.message = message
        self.line = line
        self.column = column
        self.file = file
        location = f"{file or '<string>'}:{line}:{column}"
        super().__init__(f"{location}: {message}")


class FeatureParseError(QARunnerError):
    """Raised when a feature file has one or more structural errors"""

    def __init__(self, errors: List[ParseError], file: Optional[str] = None):
        self.errors = errors
        self.file = file
        details = "; ".join(str(error) for error in errors)
        super().__init__(f"{len(errors)} parse error(s) in {file or '<string>'}: {details}")


class TagExpressionError(QARunnerError):
    """Invalid tag expression"""
    pass


class HookError(QARunnerError):
    """Failure raised by, or on behalf of, a lifecycle hook"""

    def __init__(
            self,
            message: str,
            hook: Any = None,
            context: Optional[Dict[str, Any]] = None,
            cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.hook = hook
        self.context = context or {}
        self.cause = cause


class RegistryLockedError(QARunnerError):
    """Hook registration attempted while the registry is locked"""
    pass


class StepDefinitionError(QARunnerError):
    """Problem with a step definition"""
    pass


class AmbiguousStepError(StepDefinitionError):
    """More than one step definition matches a step"""

    def __init__(self, step_text: str, patterns: List[str]):
        self.step_text = step_text
        self.patterns = patterns
        super().__init__(
            f"Ambiguous step '{step_text}' matches: {', '.join(patterns)}"
        )


class BackgroundFailedError(QARunnerError):
    """Background failed and the run is configured to abort"""
    pass


class DataProviderError(QARunnerError):
    """Data provider could not load rows"""
    pass


class StepPending(QARunnerError):
    """Raised by a step implementation that is not finished yet"""
    pass


class StepSkipped(QARunnerError):
    """Raised by a step implementation that decides to skip itself"""
    pass
