"""Parsed feature model: Feature, Scenario, Step, Examples, DataTable, DocString."""
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

PLACEHOLDER = re.compile(r'<([^<>]+)>')


def interpolate(text: str, values: Mapping[str, Any]) -> str:
    """Replace ``<name>`` placeholders with values; unknown names are left alone"""
    def substitute(match):
        key = match.group(1)
        if key in values:
            return str(values[key])
        return match.group(0)

    return PLACEHOLDER.sub(substitute, text)


@dataclass
class DataTable:
    """A step table. The first row is conventionally the header."""
    cells: List[List[str]]

    def raw(self) -> List[List[str]]:
        return [list(row) for row in self.cells]

    def rows(self) -> List[List[str]]:
        """Rows without the header"""
        return [list(row) for row in self.cells[1:]]

    def hashes(self) -> List[Dict[str, str]]:
        """One dict per data row, keyed by the header"""
        if not self.cells:
            return []
        header = self.cells[0]
        return [dict(zip(header, row)) for row in self.cells[1:]]

    def rows_hash(self) -> Dict[str, str]:
        """First column to second column, for two-column tables"""
        result = {}
        for row in self.cells:
            if len(row) != 2:
                raise ValueError(f"rows_hash requires exactly 2 columns, got {len(row)}")
            result[row[0]] = row[1]
        return result

    def transpose(self) -> "DataTable":
        return DataTable([list(column) for column in zip(*self.cells)])

    def interpolate(self, values: Mapping[str, Any]) -> "DataTable":
        return DataTable([[interpolate(cell, values) for cell in row] for row in self.cells])

    def __len__(self) -> int:
        return len(self.cells)


@dataclass
class DocString:
    """Free text block attached to a step"""
    content: str
    media_type: str = ""

    def interpolate(self, values: Mapping[str, Any]) -> "DocString":
        return DocString(interpolate(self.content, values), self.media_type)

    def __str__(self) -> str:
        return self.content


@dataclass
class Step:
    """A single Given/When/Then/And/But/* line"""
    keyword: str
    text: str
    line: int = 0
    data_table: Optional[DataTable] = None
    doc_string: Optional[DocString] = None

    @property
    def full_text(self) -> str:
        return f"{self.keyword} {self.text}"

    def interpolate(self, values: Mapping[str, Any]) -> "Step":
        return replace(
            self,
            text=interpolate(self.text, values),
            data_table=self.data_table.interpolate(values) if self.data_table else None,
            doc_string=self.doc_string.interpolate(values) if self.doc_string else None,
        )


@dataclass
class Examples:
    """Header plus data rows feeding a Scenario Outline"""
    header: List[str]
    rows: List[List[str]] = field(default_factory=list)
    name: str = ""
    tags: List[str] = field(default_factory=list)
    line: int = 0

    def as_dicts(self) -> List[Dict[str, str]]:
        return [dict(zip(self.header, row)) for row in self.rows]


class ScenarioKind(Enum):
    PLAIN = "plain"
    OUTLINE = "scenario_outline"
    BACKGROUND = "background"


@dataclass
class Scenario:
    """A scenario, scenario outline or background"""
    name: str
    steps: List[Step] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    kind: ScenarioKind = ScenarioKind.PLAIN
    examples: List[Examples] = field(default_factory=list)
    description: str = ""
    line: int = 0

    @property
    def is_outline(self) -> bool:
        return self.kind is ScenarioKind.OUTLINE or bool(self.examples)

    def has_tag(self, tag: str) -> bool:
        return tag.lower() in (t.lower() for t in self.tags)

    def instantiate(self, values: Mapping[str, Any], extra_tags: Optional[List[str]] = None) -> "Scenario":
        """Concrete plain scenario with ``<placeholders>`` filled from ``values``"""
        tags = list(self.tags)
        for tag in extra_tags or []:
            if tag not in tags:
                tags.append(tag)
        return replace(
            self,
            name=interpolate(self.name, values),
            steps=[step.interpolate(values) for step in self.steps],
            tags=tags,
            kind=ScenarioKind.PLAIN,
            examples=[],
        )


@dataclass
class Feature:
    """One parsed feature file"""
    name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    language: str = "en"
    background: Optional[Scenario] = None
    scenarios: List[Scenario] = field(default_factory=list)
    uri: Optional[str] = None
    line: int = 0
