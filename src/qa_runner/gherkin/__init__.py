from .keywords import TokenType, supported_languages
from .lexer import GherkinLexer, Token, tokenize
from .models import (
    DataTable,
    DocString,
    Examples,
    Feature,
    Scenario,
    ScenarioKind,
    Step,
)
from .parser import GherkinParser, parse_feature, parse_feature_file
from .tag_expression import TagExpression, evaluate_tag_expression, matches_any

__all__ = [
    'TokenType',
    'Token',
    'GherkinLexer',
    'GherkinParser',
    'tokenize',
    'parse_feature',
    'parse_feature_file',
    'supported_languages',
    'DataTable',
    'DocString',
    'Examples',
    'Feature',
    'Scenario',
    'ScenarioKind',
    'Step',
    'TagExpression',
    'evaluate_tag_expression',
    'matches_any',
]
