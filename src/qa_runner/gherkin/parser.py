import logging
from pathlib import Path
from typing import List, Optional, Union

from ..core.exceptions import FeatureParseError, ParseError
from .keywords import DEFAULT_LANGUAGE, TokenType
from .lexer import GherkinLexer, Token, split_row_value
from .models import DataTable, DocString, Examples, Feature, Scenario, ScenarioKind, Step

logger = logging.getLogger(__name__)


def _dedent(content: str, indent: int) -> str:
    """Strip up to ``indent`` leading whitespace characters from every line"""
    lines = []
    for line in content.split("\n"):
        leading = len(line) - len(line.lstrip())
        lines.append(line[min(leading, indent):])
    return "\n".join(lines)


def _add_tags(target: List[str], tags: List[str]) -> None:
    for tag in tags:
        if tag not in target:
            target.append(tag)


class GherkinParser:
    """Builds a Feature from a token stream"""

    def parse(self, tokens: List[Token], file_path: Optional[str] = None) -> Feature:
        feature: Optional[Feature] = None
        current: Optional[Scenario] = None
        examples: Optional[Examples] = None
        last_step: Optional[Step] = None
        pending_tags: List[str] = []
        language = DEFAULT_LANGUAGE

        for token in tokens:
            if token.type is TokenType.COMMENT:
                if token.value.startswith("language:"):
                    language = token.value.split(":", 1)[1].strip()
                continue

            if token.type is TokenType.TAG_LINE:
                pending_tags.append(token.value)
                continue

            if token.type is TokenType.FEATURE_LINE:
                feature = Feature(name=token.value, language=language, uri=file_path, line=token.line)
                _add_tags(feature.tags, pending_tags)
                pending_tags = []
                continue

            if feature is None:
                raise ParseError(f"Expected Feature, got {token.type.value}", token.line, token.column, file_path)

            if token.type is TokenType.BACKGROUND_LINE:
                current = Scenario(name=token.value, kind=ScenarioKind.BACKGROUND, line=token.line)
                feature.background = current
                examples = None
                last_step = None

            elif token.type in (TokenType.SCENARIO_LINE, TokenType.SCENARIO_OUTLINE_LINE):
                kind = ScenarioKind.OUTLINE if token.type is TokenType.SCENARIO_OUTLINE_LINE else ScenarioKind.PLAIN
                current = Scenario(name=token.value, kind=kind, line=token.line)
                _add_tags(current.tags, pending_tags)
                pending_tags = []
                feature.scenarios.append(current)
                examples = None
                last_step = None

            elif token.type is TokenType.EXAMPLES_LINE:
                if current is None:
                    raise ParseError("Examples outside of a Scenario Outline", token.line, token.column, file_path)
                examples = Examples(header=[], name=token.value, line=token.line)
                _add_tags(examples.tags, pending_tags)
                pending_tags = []
                current.examples.append(examples)
                last_step = None

            elif token.type is TokenType.STEP_LINE:
                if current is None:
                    raise ParseError("Step outside of a Scenario or Background", token.line, token.column, file_path)
                last_step = Step(keyword=token.keyword, text=token.value, line=token.line)
                current.steps.append(last_step)
                examples = None

            elif token.type is TokenType.TABLE_ROW:
                cells = split_row_value(token.value)
                if examples is not None:
                    if not examples.header:
                        examples.header = cells
                    else:
                        examples.rows.append(cells)
                elif last_step is not None:
                    if last_step.data_table is None:
                        last_step.data_table = DataTable([])
                    last_step.data_table.cells.append(cells)
                else:
                    raise ParseError("Table row without a step or Examples", token.line, token.column, file_path)

            elif token.type is TokenType.DOC_STRING_SEPARATOR:
                if last_step is None:
                    raise ParseError("Doc string without a step", token.line, token.column, file_path)
                last_step.doc_string = DocString(_dedent(token.value, token.indent), token.media_type)

            elif token.type is TokenType.DESCRIPTION:
                target = current if current is not None else feature
                if current is not None and current.steps:
                    logger.debug(f"Ignoring free text after steps at line {token.line}")
                    continue
                target.description = f"{target.description}\n{token.value}" if target.description else token.value

        if feature is None:
            raise ParseError("No Feature declaration found", 0, 0, file_path)

        return feature


def parse_feature(content: str, file_path: Optional[str] = None, language: str = DEFAULT_LANGUAGE) -> Feature:
    """
    Tokenize, validate and parse feature text

    Raises:
        ParseError: for an unclosed doc string
        FeatureParseError: carrying every structural error found
    """
    lexer = GherkinLexer(language)
    tokens = lexer.tokenize(content, file_path)

    errors = lexer.validate_token_sequence(tokens, file_path)
    if errors:
        raise FeatureParseError(errors, file_path)

    feature = GherkinParser().parse(tokens, file_path)
    logger.debug(f"Parsed feature '{feature.name}' with {len(feature.scenarios)} scenario(s)")
    return feature


def parse_feature_file(path: Union[str, Path]) -> Feature:
    """Read and parse a .feature file"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Feature file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        return parse_feature(f.read(), str(path))
