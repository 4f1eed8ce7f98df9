"""Row sources for data-driven scenarios tagged ``@DataProvider(source="...")``."""
import re
import csv
import json
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.exceptions import DataProviderError

logger = logging.getLogger(__name__)

DATA_PROVIDER_TAG = re.compile(r'^@DataProvider\((.*)\)$', re.IGNORECASE)
OPTION = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|\'([^\']*)\'|([^,\s]+))')
EXECUTE_FLAG = '_execute'
FALSE_VALUES = ('false', 'no', 'n', '0', '')


@dataclass
class DataSource:
    """Parsed ``@DataProvider`` tag"""
    source: str
    options: Dict[str, str] = field(default_factory=dict)

    @property
    def filters(self) -> Dict[str, str]:
        """``filter="status=active;role=admin"`` as a dict"""
        result = {}
        for clause in self.options.get('filter', '').split(';'):
            if '=' in clause:
                key, value = clause.split('=', 1)
                result[key.strip()] = value.strip()
        return result


def data_source_from_tags(tags: Iterable[str]) -> Optional[DataSource]:
    """The first ``@DataProvider(...)`` tag, parsed, or None"""
    for tag in tags:
        match = DATA_PROVIDER_TAG.match(tag)
        if not match:
            continue
        options = {}
        for option in OPTION.finditer(match.group(1)):
            value = next(group for group in option.groups()[1:] if group is not None)
            options[option.group(1)] = value
        if 'source' not in options:
            raise DataProviderError(f"Data provider tag without a source: {tag}")
        return DataSource(source=options.pop('source'), options=options)
    return None


def should_execute(row: Dict[str, Any]) -> bool:
    """Rows flagged ``_execute: false`` are left out"""
    flag = row.get(EXECUTE_FLAG, True)
    if isinstance(flag, str):
        return flag.strip().lower() not in FALSE_VALUES
    return bool(flag)


class FileDataProvider:
    """Loads rows from CSV, JSON or YAML files"""

    def __init__(self, base_dir: Union[str, Path, None] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def load(self, source: DataSource) -> List[Dict[str, Any]]:
        """
        Load, filter and clean the rows for a data source

        Raises:
            DataProviderError: missing file, unsupported format or bad content
        """
        path = Path(source.source)
        if not path.is_absolute():
            path = self.base_dir / path
        if not path.exists():
            raise DataProviderError(f"Data source not found: {path}")

        suffix = path.suffix.lower()
        try:
            if suffix == '.csv':
                rows = self._load_csv(path, source.options.get('delimiter', ','))
            elif suffix == '.json':
                with open(path, 'r', encoding='utf-8') as f:
                    rows = self._rows_from(json.load(f), source.options.get('key'))
            elif suffix in ('.yaml', '.yml'):
                with open(path, 'r', encoding='utf-8') as f:
                    rows = self._rows_from(yaml.safe_load(f), source.options.get('key'))
            else:
                raise DataProviderError(f"Unsupported data source format: {suffix}")
        except (ValueError, yaml.YAMLError, csv.Error) as e:
            raise DataProviderError(f"Could not read data source {path}: {e}") from e

        selected = []
        for index, row in enumerate(rows):
            if not should_execute(row):
                logger.info(f"Skipping data row {index + 1} from {path.name}: marked not to execute")
                continue
            if not self._matches(row, source.filters):
                continue
            selected.append({k: v for k, v in row.items() if k != EXECUTE_FLAG})

        logger.debug(f"Loaded {len(selected)} of {len(rows)} row(s) from {path}")
        return selected

    @staticmethod
    def _load_csv(path: Path, delimiter: str) -> List[Dict[str, Any]]:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            return [dict(row) for row in csv.DictReader(f, delimiter=delimiter)]

    @staticmethod
    def _rows_from(data: Any, key: Optional[str]) -> List[Dict[str, Any]]:
        if isinstance(data, dict):
            data = data.get(key or 'data')
        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            raise DataProviderError("Data source must contain a list of objects")
        return data

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Dict[str, str]) -> bool:
        return all(str(row.get(key)) == value for key, value in filters.items())
