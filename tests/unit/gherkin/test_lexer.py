import pytest
from qa_runner.core.exceptions import ParseError
from qa_runner.gherkin.keywords import TokenType
from qa_runner.gherkin.lexer import GherkinLexer, split_row_value, tokenize


def kinds(tokens):
    return [(token.type, token.value) for token in tokens]


class TestGherkinLexer:
    """Test GherkinLexer"""

    @pytest.fixture
    def lexer(self):
        return GherkinLexer()

    def test_minimal_feature(self, lexer):
        """Test token sequence of a minimal feature"""
        tokens = lexer.tokenize("Feature: F\n  Scenario: S\n    Given a\n    When b\n    Then c")

        assert kinds(tokens) == [
            (TokenType.FEATURE_LINE, "F"),
            (TokenType.SCENARIO_LINE, "S"),
            (TokenType.STEP_LINE, "a"),
            (TokenType.STEP_LINE, "b"),
            (TokenType.STEP_LINE, "c"),
        ]

    def test_positions(self, lexer):
        """Test line, column and indent tracking"""
        tokens = lexer.tokenize("Feature: F\n\n  Scenario: S\n    Given a")

        scenario = tokens[1]
        assert scenario.line == 3
        assert scenario.column == 3
        assert scenario.indent == 2

        step = tokens[2]
        assert step.line == 4
        assert step.column == 5
        assert step.keyword == "Given"

    def test_tags_one_token_each(self, lexer):
        """Test every tag on a line becomes its own token"""
        tokens = lexer.tokenize("@smoke @slow @retry(3)\nFeature: F")

        assert kinds(tokens)[:3] == [
            (TokenType.TAG_LINE, "@smoke"),
            (TokenType.TAG_LINE, "@slow"),
            (TokenType.TAG_LINE, "@retry(3)"),
        ]
        assert [t.column for t in tokens[:3]] == [1, 8, 14]

    def test_trailing_comment_on_tag_line(self, lexer):
        """Test tags mentioned in a trailing comment are not tokens"""
        tokens = lexer.tokenize("@smoke # see @legacy\nFeature: F")

        assert kinds(tokens) == [
            (TokenType.TAG_LINE, "@smoke"),
            (TokenType.FEATURE_LINE, "F"),
        ]

    def test_comments_and_descriptions(self, lexer):
        """Test comment lines and free text"""
        tokens = lexer.tokenize("# note\nFeature: F\n  As a user\n  I want things")

        assert kinds(tokens) == [
            (TokenType.COMMENT, "note"),
            (TokenType.FEATURE_LINE, "F"),
            (TokenType.DESCRIPTION, "As a user"),
            (TokenType.DESCRIPTION, "I want things"),
        ]

    def test_table_rows(self, lexer):
        """Test table rows are trimmed and escaped pipes survive"""
        tokens = lexer.tokenize("Feature: F\n  Scenario: S\n    Given x\n      |  a | b\\|c |")

        row = tokens[-1]
        assert row.type is TokenType.TABLE_ROW
        assert split_row_value(row.value) == ["a", "b|c"]

    def test_parse_table_row(self):
        """Test cell splitting"""
        assert GherkinLexer.parse_table_row("| name | age |") == ["name", "age"]
        assert GherkinLexer.parse_table_row("|  |x|") == ["", "x"]

    def test_doc_string(self, lexer):
        """Test doc string lines are collected verbatim"""
        content = (
            'Feature: F\n'
            '  Scenario: S\n'
            '    Given payload\n'
            '      """json\n'
            '      {"a": 1}\n'
            '        nested\n'
            '      """\n'
            '    Then done'
        )
        tokens = lexer.tokenize(content)

        doc = tokens[3]
        assert doc.type is TokenType.DOC_STRING_SEPARATOR
        assert doc.value == '      {"a": 1}\n        nested'
        assert doc.indent == 6
        assert doc.media_type == "json"
        assert tokens[4].type is TokenType.STEP_LINE

    def test_backtick_doc_string(self, lexer):
        """Test the alternate fence"""
        tokens = lexer.tokenize("Feature: F\n  Scenario: S\n    Given x\n      ```\n      # not a comment\n      ```")

        assert tokens[-1].type is TokenType.DOC_STRING_SEPARATOR
        assert tokens[-1].value.strip() == "# not a comment"

    def test_unclosed_doc_string(self, lexer):
        """Test an unclosed doc string raises ParseError"""
        with pytest.raises(ParseError) as exc_info:
            lexer.tokenize('Feature: F\n  Scenario: S\n    Given x\n      """\n      text', "a.feature")

        assert exc_info.value.line == 4
        assert exc_info.value.file == "a.feature"
        assert "Unclosed doc string" in str(exc_info.value)

    def test_outline_keywords(self, lexer):
        """Test Scenario Outline, Scenario Template, Examples and Scenarios"""
        tokens = lexer.tokenize(
            "Feature: F\n"
            "  Scenario Outline: O\n"
            "  Scenario Template: T\n"
            "    Examples:\n"
            "    Scenarios: more\n"
            "  Example: E"
        )

        assert [t.type for t in tokens] == [
            TokenType.FEATURE_LINE,
            TokenType.SCENARIO_OUTLINE_LINE,
            TokenType.SCENARIO_OUTLINE_LINE,
            TokenType.EXAMPLES_LINE,
            TokenType.EXAMPLES_LINE,
            TokenType.SCENARIO_LINE,
        ]

    def test_conjunction_and_star_steps(self, lexer):
        """Test And, But and * are step lines"""
        tokens = lexer.tokenize("Feature: F\n  Scenario: S\n    * a\n    And b\n    But c")

        assert [t.keyword for t in tokens[2:]] == ["*", "And", "But"]

    def test_step_keyword_needs_space(self, lexer):
        """Test a word starting with a keyword is not a step"""
        tokens = lexer.tokenize("Feature: F\n  Andromeda is a galaxy")

        assert tokens[1].type is TokenType.DESCRIPTION

    def test_language_directive(self, lexer):
        """Test the language comment swaps keywords"""
        tokens = lexer.tokenize(
            "# language: es\n"
            "Característica: Búsqueda\n"
            "  Escenario: Buscar\n"
            "    Dado un usuario\n"
            "    Y otro\n"
        )

        assert tokens[0].type is TokenType.COMMENT
        assert tokens[0].value == "language: es"
        assert tokens[1].type is TokenType.FEATURE_LINE
        assert tokens[1].keyword == "Feature"
        assert tokens[3].keyword == "Given"
        assert tokens[4].keyword == "And"

    def test_language_resets_between_files(self, lexer):
        """Test each tokenize call starts in the default language"""
        lexer.tokenize("# language: de\nFunktionalität: F")
        tokens = lexer.tokenize("Funktionalität: F")

        assert tokens[0].type is TokenType.DESCRIPTION

    def test_unknown_language_keeps_english(self, lexer):
        """Test an unsupported language is ignored"""
        tokens = lexer.tokenize("# language: xx\nFeature: F")

        assert tokens[1].type is TokenType.FEATURE_LINE

    def test_unsupported_initial_language(self):
        """Test constructing with an unknown language"""
        with pytest.raises(ValueError):
            GherkinLexer("xx")

    def test_tokens_are_immutable(self, lexer):
        """Test tokens cannot be modified"""
        token = lexer.tokenize("Feature: F")[0]

        with pytest.raises(AttributeError):
            token.value = "other"

    def test_analyze_tokens(self):
        """Test token stream summary"""
        analysis = GherkinLexer.analyze_tokens(tokenize(
            "@a\nFeature: F\n  Background:\n    Given x\n  Scenario Outline: O\n    Given <v>\n"
            "    Examples:\n      | v |\n      | 1 |"
        ))

        assert analysis['features'] == 1
        assert analysis['scenarios'] == 1
        assert analysis['steps'] == 2
        assert analysis['tags'] == {"@a"}
        assert analysis['has_background'] is True
        assert analysis['has_examples'] is True


class TestTokenSequenceValidation:
    """Test structural validation"""

    def validate(self, content):
        return GherkinLexer.validate_token_sequence(tokenize(content, "x.feature"), "x.feature")

    def test_valid_feature(self):
        """Test a well-formed feature has no errors"""
        errors = self.validate(
            "Feature: F\n  Background:\n    Given x\n  Scenario Outline: O\n    Given <v>\n"
            "    Examples:\n      | v |\n      | 1 |\n  Scenario: S\n    Then y"
        )
        assert errors == []

    def test_multiple_features(self):
        """Test a second Feature declaration"""
        errors = self.validate("Feature: A\nFeature: B")

        assert len(errors) == 1
        assert errors[0].message == "Multiple Feature declarations found"
        assert errors[0].line == 2

    def test_background_after_scenario(self):
        """Test Background after a Scenario"""
        errors = self.validate("Feature: F\n  Scenario: S\n    Given x\n  Background:\n    Given y")

        assert [e.message for e in errors] == ["Background must appear before any Scenario"]

    def test_background_before_feature(self):
        """Test Background without a Feature"""
        errors = self.validate("Background:\nFeature: F")

        assert errors[0].message == "Background must appear after Feature"

    def test_examples_outside_outline(self):
        """Test Examples under a plain Scenario"""
        errors = self.validate("Feature: F\n  Scenario: S\n    Given x\n    Examples:\n      | a |")

        assert [e.message for e in errors] == ["Examples must appear within a Scenario Outline"]

    def test_step_outside_scenario(self):
        """Test a Step directly under Feature"""
        errors = self.validate("Feature: F\n  Given x")

        assert [e.message for e in errors] == ["Step must appear within a Scenario or Background"]

    def test_all_errors_collected(self):
        """Test every violation is reported"""
        errors = self.validate(
            "Feature: F\n  Given x\n  Scenario: S\n    Examples:\nFeature: G"
        )

        assert len(errors) == 3
        assert all(e.file == "x.feature" for e in errors)
