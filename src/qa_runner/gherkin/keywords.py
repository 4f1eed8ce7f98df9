"""Language-indexed Gherkin keyword tables."""
from enum import Enum
from typing import Dict, List, Tuple


class TokenType(Enum):
    """Kind of line produced by the tokenizer"""
    FEATURE_LINE = "FeatureLine"
    BACKGROUND_LINE = "BackgroundLine"
    SCENARIO_LINE = "ScenarioLine"
    SCENARIO_OUTLINE_LINE = "ScenarioOutlineLine"
    EXAMPLES_LINE = "ExamplesLine"
    STEP_LINE = "StepLine"
    TAG_LINE = "TagLine"
    TABLE_ROW = "TableRow"
    DOC_STRING_SEPARATOR = "DocStringSeparator"
    COMMENT = "Comment"
    DESCRIPTION = "Description"
    EOF = "EOF"


DEFAULT_LANGUAGE = "en"

# keyword text -> (token type, canonical English keyword)
KeywordTable = Dict[str, Tuple[TokenType, str]]

LANGUAGES: Dict[str, KeywordTable] = {
    "en": {
        "Feature:": (TokenType.FEATURE_LINE, "Feature"),
        "Background:": (TokenType.BACKGROUND_LINE, "Background"),
        "Scenario:": (TokenType.SCENARIO_LINE, "Scenario"),
        "Example:": (TokenType.SCENARIO_LINE, "Scenario"),
        "Scenario Outline:": (TokenType.SCENARIO_OUTLINE_LINE, "Scenario Outline"),
        "Scenario Template:": (TokenType.SCENARIO_OUTLINE_LINE, "Scenario Outline"),
        "Examples:": (TokenType.EXAMPLES_LINE, "Examples"),
        "Scenarios:": (TokenType.EXAMPLES_LINE, "Examples"),
        "Given": (TokenType.STEP_LINE, "Given"),
        "When": (TokenType.STEP_LINE, "When"),
        "Then": (TokenType.STEP_LINE, "Then"),
        "And": (TokenType.STEP_LINE, "And"),
        "But": (TokenType.STEP_LINE, "But"),
        "*": (TokenType.STEP_LINE, "*"),
    },
    "es": {
        "Característica:": (TokenType.FEATURE_LINE, "Feature"),
        "Antecedentes:": (TokenType.BACKGROUND_LINE, "Background"),
        "Escenario:": (TokenType.SCENARIO_LINE, "Scenario"),
        "Esquema del escenario:": (TokenType.SCENARIO_OUTLINE_LINE, "Scenario Outline"),
        "Ejemplos:": (TokenType.EXAMPLES_LINE, "Examples"),
        "Dado": (TokenType.STEP_LINE, "Given"),
        "Cuando": (TokenType.STEP_LINE, "When"),
        "Entonces": (TokenType.STEP_LINE, "Then"),
        "Y": (TokenType.STEP_LINE, "And"),
        "Pero": (TokenType.STEP_LINE, "But"),
    },
    "fr": {
        "Fonctionnalité:": (TokenType.FEATURE_LINE, "Feature"),
        "Contexte:": (TokenType.BACKGROUND_LINE, "Background"),
        "Scénario:": (TokenType.SCENARIO_LINE, "Scenario"),
        "Plan du scénario:": (TokenType.SCENARIO_OUTLINE_LINE, "Scenario Outline"),
        "Exemples:": (TokenType.EXAMPLES_LINE, "Examples"),
        "Étant donné": (TokenType.STEP_LINE, "Given"),
        "Quand": (TokenType.STEP_LINE, "When"),
        "Alors": (TokenType.STEP_LINE, "Then"),
        "Et": (TokenType.STEP_LINE, "And"),
        "Mais": (TokenType.STEP_LINE, "But"),
    },
    "de": {
        "Funktionalität:": (TokenType.FEATURE_LINE, "Feature"),
        "Hintergrund:": (TokenType.BACKGROUND_LINE, "Background"),
        "Szenario:": (TokenType.SCENARIO_LINE, "Scenario"),
        "Szenariogrundriss:": (TokenType.SCENARIO_OUTLINE_LINE, "Scenario Outline"),
        "Beispiele:": (TokenType.EXAMPLES_LINE, "Examples"),
        "Gegeben": (TokenType.STEP_LINE, "Given"),
        "Wenn": (TokenType.STEP_LINE, "When"),
        "Dann": (TokenType.STEP_LINE, "Then"),
        "Und": (TokenType.STEP_LINE, "And"),
        "Aber": (TokenType.STEP_LINE, "But"),
    },
}

PRIMARY_STEP_KEYWORDS = ("Given", "When", "Then")
CONJUNCTION_STEP_KEYWORDS = ("And", "But", "*")


def supported_languages() -> List[str]:
    return sorted(LANGUAGES)


def keyword_table(language: str) -> List[Tuple[str, TokenType, str]]:
    """Keywords active for ``language``, longest first.

    English keywords stay recognised after switching language.
    """
    table = dict(LANGUAGES[DEFAULT_LANGUAGE])
    if language != DEFAULT_LANGUAGE:
        table.update(LANGUAGES[language])
    entries = [(text, token_type, canonical) for text, (token_type, canonical) in table.items()]
    entries.sort(key=lambda entry: len(entry[0]), reverse=True)
    return entries
