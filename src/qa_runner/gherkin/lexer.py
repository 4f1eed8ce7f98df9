import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.exceptions import ParseError
from .keywords import DEFAULT_LANGUAGE, LANGUAGES, TokenType, keyword_table

logger = logging.getLogger(__name__)

COMMENT_PREFIX = '#'
TAG_PREFIX = '@'
TABLE_DELIMITER = '|'
DOC_STRING_FENCES = ('"""', '```')
LANGUAGE_DIRECTIVE = re.compile(r'^#\s*language:\s*(\S+)\s*$')
TAG_PATTERN = re.compile(r'@[\w-]+(?:\([^)]*\))?')
TAG_LINE_COMMENT = re.compile(r'\s#')
CELL_SPLIT = re.compile(r'(?<!\\)\|')


@dataclass(frozen=True)
class Token:
    """One classified line (or tag) of feature text"""
    type: TokenType
    value: str
    line: int
    column: int
    indent: int
    keyword: str = ""  # canonical English keyword for keyword lines
    media_type: str = ""  # doc string content type, e.g. ``"""json``

    def __repr__(self) -> str:
        return f"{self.type.value}({self.value!r})@{self.line}:{self.column}"


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())


class GherkinLexer:
    """Turns raw feature text into an ordered token stream"""

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        if language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        self.default_language = language
        self.language = language
        self._keywords = keyword_table(language)

    def set_language(self, language: str) -> None:
        """Swap the active keyword table for the rest of the file"""
        if language in LANGUAGES:
            self.language = language
            self._keywords = keyword_table(language)
            logger.debug(f"Lexer language set to: {language}")
        else:
            logger.warning(f"Unsupported language: {language}. Using English.")

    def tokenize(self, content: str, file_path: Optional[str] = None) -> List[Token]:
        """
        Tokenize feature text

        Args:
            content: Raw feature text
            file_path: Identifier used in error messages

        Returns:
            Ordered list of tokens

        Raises:
            ParseError: on an unclosed doc string
        """
        self.set_language(self.default_language)
        tokens: List[Token] = []

        doc_fence = None
        doc_lines: List[str] = []
        doc_start = 0
        doc_indent = 0
        doc_media_type = ""

        for index, line in enumerate(content.splitlines()):
            line_number = index + 1
            stripped = line.strip()

            if doc_fence is not None:
                if stripped == doc_fence:
                    tokens.append(Token(
                        type=TokenType.DOC_STRING_SEPARATOR,
                        value="\n".join(doc_lines),
                        line=doc_start,
                        column=doc_indent + 1,
                        indent=doc_indent,
                        media_type=doc_media_type,
                    ))
                    doc_fence = None
                    doc_lines = []
                else:
                    doc_lines.append(line)
                continue

            if not stripped:
                continue

            fence = next((f for f in DOC_STRING_FENCES if stripped.startswith(f)), None)
            if fence:
                doc_fence = fence
                doc_lines = []
                doc_start = line_number
                doc_indent = _indent_of(line)
                doc_media_type = stripped[len(fence):].strip()
                continue

            directive = LANGUAGE_DIRECTIVE.match(stripped)
            if directive:
                self.set_language(directive.group(1))
                tokens.append(Token(
                    type=TokenType.COMMENT,
                    value=f"language: {directive.group(1)}",
                    line=line_number,
                    column=line.index(COMMENT_PREFIX) + 1,
                    indent=_indent_of(line),
                ))
                continue

            if stripped.startswith(COMMENT_PREFIX):
                tokens.append(Token(
                    type=TokenType.COMMENT,
                    value=stripped[1:].strip(),
                    line=line_number,
                    column=line.index(COMMENT_PREFIX) + 1,
                    indent=_indent_of(line),
                ))
                continue

            if stripped.startswith(TAG_PREFIX):
                # a trailing comment ends the tag list
                comment = TAG_LINE_COMMENT.search(line)
                tag_text = line[:comment.start()] if comment else line
                for match in TAG_PATTERN.finditer(tag_text):
                    tokens.append(Token(
                        type=TokenType.TAG_LINE,
                        value=match.group(0),
                        line=line_number,
                        column=match.start() + 1,
                        indent=_indent_of(line),
                    ))
                continue

            if stripped.startswith(TABLE_DELIMITER) and stripped.endswith(TABLE_DELIMITER):
                tokens.append(Token(
                    type=TokenType.TABLE_ROW,
                    value=TABLE_DELIMITER.join(self.parse_table_row(stripped)),
                    line=line_number,
                    column=line.index(TABLE_DELIMITER) + 1,
                    indent=_indent_of(line),
                ))
                continue

            token = self._keyword_token(line, line_number)
            if token is None:
                token = Token(
                    type=TokenType.DESCRIPTION,
                    value=stripped,
                    line=line_number,
                    column=_indent_of(line) + 1,
                    indent=_indent_of(line),
                )
            tokens.append(token)

        if doc_fence is not None:
            raise ParseError(
                f"Unclosed doc string starting at line {doc_start}",
                doc_start,
                doc_indent + 1,
                file_path,
            )

        return tokens

    def _keyword_token(self, line: str, line_number: int) -> Optional[Token]:
        stripped = line.strip()
        for text, token_type, canonical in self._keywords:
            if token_type is TokenType.STEP_LINE:
                if not stripped.startswith(text + ' '):
                    continue
            elif not stripped.startswith(text):
                continue

            value = stripped[len(text):].strip()
            return Token(
                type=token_type,
                value=value,
                line=line_number,
                column=line.index(text) + 1,
                indent=_indent_of(line),
                keyword=canonical,
            )
        return None

    @staticmethod
    def parse_table_row(row: str) -> List[str]:
        """Split a ``| a | b |`` row into trimmed cells. Escaped pipes stay escaped."""
        parts = CELL_SPLIT.split(row.strip())
        return [part.strip() for part in parts[1:-1]]

    @staticmethod
    def analyze_tokens(tokens: List[Token]) -> Dict[str, Any]:
        """Summarise a token stream"""
        analysis = {
            'features': 0,
            'scenarios': 0,
            'steps': 0,
            'tags': set(),
            'has_background': False,
            'has_examples': False,
        }

        for token in tokens:
            if token.type is TokenType.FEATURE_LINE:
                analysis['features'] += 1
            elif token.type in (TokenType.SCENARIO_LINE, TokenType.SCENARIO_OUTLINE_LINE):
                analysis['scenarios'] += 1
            elif token.type is TokenType.STEP_LINE:
                analysis['steps'] += 1
            elif token.type is TokenType.TAG_LINE:
                analysis['tags'].add(token.value)
            elif token.type is TokenType.BACKGROUND_LINE:
                analysis['has_background'] = True
            elif token.type is TokenType.EXAMPLES_LINE:
                analysis['has_examples'] = True

        return analysis

    @staticmethod
    def validate_token_sequence(tokens: List[Token], file_path: Optional[str] = None) -> List[ParseError]:
        """
        Check the structure of a token stream.

        Every violation is collected so a file reports all of its problems at once.
        """
        errors: List[ParseError] = []
        seen_feature = False
        seen_background = False
        in_scenario = False
        in_outline = False
        in_background = False

        def error(message: str, token: Token) -> None:
            errors.append(ParseError(message, token.line, token.column, file_path))

        for token in tokens:
            if token.type is TokenType.FEATURE_LINE:
                if seen_feature:
                    error('Multiple Feature declarations found', token)
                seen_feature = True

            elif token.type is TokenType.BACKGROUND_LINE:
                if not seen_feature:
                    error('Background must appear after Feature', token)
                if in_scenario:
                    error('Background must appear before any Scenario', token)
                elif seen_background:
                    error('Multiple Background declarations found', token)
                seen_background = True
                in_background = True

            elif token.type in (TokenType.SCENARIO_LINE, TokenType.SCENARIO_OUTLINE_LINE):
                if not seen_feature:
                    error('Scenario must appear after Feature', token)
                in_scenario = True
                in_outline = token.type is TokenType.SCENARIO_OUTLINE_LINE
                in_background = False

            elif token.type is TokenType.EXAMPLES_LINE:
                if not in_outline:
                    error('Examples must appear within a Scenario Outline', token)

            elif token.type is TokenType.STEP_LINE:
                if not in_scenario and not in_background:
                    error('Step must appear within a Scenario or Background', token)

        return errors


def split_row_value(value: str) -> List[str]:
    """Cells of a TableRow token value, with ``\\|`` escapes resolved"""
    return [cell.replace('\\|', '|') for cell in CELL_SPLIT.split(value)]


def tokenize(content: str, file_path: Optional[str] = None) -> List[Token]:
    """Tokenize feature text with a fresh English lexer"""
    return GherkinLexer().tokenize(content, file_path)
