"""
Boolean tag expressions such as ``@smoke and not (@slow or @wip)``.

One evaluator serves both hook filtering and scenario selection.
"""
import re
import logging
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ..core.exceptions import TagExpressionError

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r'\(|\)|@[\w-]+(?:\([^)]*\))?|[^\s()]+')
OPERATORS = ('and', 'or', 'not')

Node = Tuple[Union[str, "Node"], ...]


class TagExpression:
    """A compiled tag expression"""

    def __init__(self, expression: str):
        self.expression = expression
        self._tokens = self._tokenize(expression)
        self._position = 0
        if not self._tokens:
            raise TagExpressionError("Invalid tag expression: empty expression")
        self.tree = self._parse_or()
        if self._position != len(self._tokens):
            raise TagExpressionError(
                f"Invalid tag expression '{expression}': unexpected '{self._tokens[self._position]}'"
            )

    @staticmethod
    def _tokenize(expression: str) -> List[str]:
        tokens = []
        for token in TOKEN_PATTERN.findall(expression):
            if token.lower() in OPERATORS:
                tokens.append(token.lower())
            elif token in ('(', ')') or token.startswith('@'):
                tokens.append(token)
            else:
                tokens.append(f"@{token}")
        return tokens

    def _peek(self) -> Optional[str]:
        if self._position < len(self._tokens):
            return self._tokens[self._position]
        return None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise TagExpressionError(f"Invalid tag expression '{self.expression}': unexpected end")
        self._position += 1
        return token

    def _parse_or(self) -> Node:
        node = self._parse_and()
        while self._peek() == 'or':
            self._take()
            node = ('or', node, self._parse_and())
        return node

    def _parse_and(self) -> Node:
        node = self._parse_not()
        while self._peek() == 'and':
            self._take()
            node = ('and', node, self._parse_not())
        return node

    def _parse_not(self) -> Node:
        if self._peek() == 'not':
            self._take()
            return ('not', self._parse_not())
        return self._parse_atom()

    def _parse_atom(self) -> Node:
        token = self._take()
        if token == '(':
            node = self._parse_or()
            if self._take() != ')':
                raise TagExpressionError(f"Invalid tag expression '{self.expression}': unmatched parenthesis")
            return node
        if token in OPERATORS or token == ')':
            raise TagExpressionError(f"Invalid tag expression '{self.expression}': unexpected '{token}'")
        return ('tag', token)

    def evaluate(self, tags: Iterable[str]) -> bool:
        return self._evaluate(self.tree, set(tags))

    def _evaluate(self, node: Node, tags: set) -> bool:
        kind = node[0]
        if kind == 'tag':
            return node[1] in tags
        if kind == 'not':
            return not self._evaluate(node[1], tags)
        if kind == 'and':
            return self._evaluate(node[1], tags) and self._evaluate(node[2], tags)
        return self._evaluate(node[1], tags) or self._evaluate(node[2], tags)

    def __repr__(self) -> str:
        return f"TagExpression({self.expression!r})"


@lru_cache(maxsize=256)
def parse_tag_expression(expression: str) -> TagExpression:
    return TagExpression(expression)


def evaluate_tag_expression(expression: str, tags: Iterable[str]) -> bool:
    """Evaluate ``expression`` against ``tags``. Raises TagExpressionError when invalid."""
    return parse_tag_expression(expression).evaluate(tags)


def matches_any(filters: Sequence[str], tags: Iterable[str]) -> bool:
    """
    True when any filter expression matches.

    An invalid expression is logged and counts as not matching.
    """
    tags = list(tags)
    for expression in filters:
        try:
            if evaluate_tag_expression(expression, tags):
                return True
        except TagExpressionError as e:
            logger.warning(f"Ignoring invalid tag expression '{expression}': {e}")
    return False
