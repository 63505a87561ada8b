"""Parser for the schema search query language.

A query is a whitespace separated list of tokens. Tokens of the form
``key:value`` with a recognized key are filters; ``AND``, ``OR`` and ``NOT``
are connectors between free-text terms; everything else is a free-text term.

Examples:
    user                                 -> terms ['user']
    email entity:field type:string       -> fields of type string matching 'email'
    Status module:common.*               -> entities in modules starting with 'common.'
    module:"billing v2"                  -> quoted value, exact module match
    user NOT deleted                     -> 'user' but not 'deleted'
    deprecated has-comment:true          -> documented entities matching 'deprecated'
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import QueryParseError
from .models import ENTITY_TYPES

logger = logging.getLogger(__name__)

# Connector recorded between two terms when none was written
DEFAULT_OPERATOR = 'AND'
OPERATORS = ('AND', 'OR', 'NOT')

_TRUTHY_VALUES = {'true', '1', 'yes'}


@dataclass(frozen=True)
class ParsedQuery:
    """Structured form of a search query string."""
    terms: List[str] = field(default_factory=list)
    operators: List[str] = field(default_factory=list)
    entity_types: List[str] = field(default_factory=list)
    field_types: List[str] = field(default_factory=list)
    module_pattern: Optional[str] = None
    module_exact: bool = False
    version_constraint: Optional[str] = None
    imports: List[str] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    # False both when has-comment is absent and when it is given a falsy value
    has_comment: bool = False
    raw: str = ''

    def has_filters(self) -> bool:
        """Return True if any structured filter is set."""
        return bool(
            self.entity_types or
            self.field_types or
            self.module_pattern or
            self.version_constraint or
            self.imports or
            self.depends_on or
            self.has_comment
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'terms': list(self.terms),
            'operators': list(self.operators),
            'entity_types': list(self.entity_types),
            'field_types': list(self.field_types),
            'module_pattern': self.module_pattern,
            'module_exact': self.module_exact,
            'version_constraint': self.version_constraint,
            'imports': list(self.imports),
            'depends_on': list(self.depends_on),
            'has_comment': self.has_comment,
            'raw': self.raw
        }

    def __str__(self) -> str:
        parts = []
        if self.terms:
            parts.append(f"terms:{self.terms}")
        if self.entity_types:
            parts.append(f"entity:{self.entity_types}")
        if self.field_types:
            parts.append(f"type:{self.field_types}")
        if self.module_pattern:
            parts.append(f"module:{self.module_pattern}")
        if self.version_constraint:
            parts.append(f"version:{self.version_constraint}")
        if self.imports:
            parts.append(f"imports:{self.imports}")
        if self.depends_on:
            parts.append(f"depends-on:{self.depends_on}")
        if self.has_comment:
            parts.append("has-comment:true")
        return ', '.join(parts)


class QueryParser:
    """Parses query strings into ParsedQuery objects.

    Parsing is fail-fast: an invalid filter value raises QueryParseError for
    the whole query instead of being dropped.
    """

    # Filter keys (lower case) mapped to the ParsedQuery attribute they feed
    FILTER_KEYS = {
        'entity': 'entity_types',
        'type': 'field_types',
        'module': 'module_pattern',
        'version': 'version_constraint',
        'imports': 'imports',
        'depends-on': 'depends_on',
        'depends_on': 'depends_on',
        'has-comment': 'has_comment',
        'has_comment': 'has_comment',
    }

    # A recognized filter with a quoted value may contain spaces; any other
    # token is a run of non-whitespace characters.
    TOKEN_PATTERN = re.compile(
        r'(?P<key>' + '|'.join(re.escape(k) for k in FILTER_KEYS) + r'):"(?P<quoted>[^"]+)"(?=\s|$)'
        r'|(?P<token>\S+)',
        re.IGNORECASE
    )

    def parse(self, raw: Optional[str]) -> ParsedQuery:
        """
        Parse a raw query string.

        Args:
            raw: Query text as typed by the user

        Returns:
            ParsedQuery with terms, connectors and filters

        Raises:
            QueryParseError: If a filter value is invalid
        """
        raw = raw or ''
        values: Dict[str, Any] = {
            'terms': [],
            'operators': [],
            'entity_types': [],
            'field_types': [],
            'module_pattern': None,
            'module_exact': False,
            'version_constraint': None,
            'imports': [],
            'depends_on': [],
            'has_comment': False,
        }
        pending_operator: Optional[str] = None

        for match in self.TOKEN_PATTERN.finditer(raw):
            if match.group('key') is not None:
                self._apply_filter(values, match.group('key'), match.group('quoted'), quoted=True)
                continue

            token = match.group('token')
            key, sep, value = token.partition(':')
            if sep and value and key.lower() in self.FILTER_KEYS:
                self._apply_filter(values, key, value, quoted=False)
            elif token in OPERATORS:
                if values['terms']:
                    pending_operator = token
                else:
                    logger.debug(f"Ignoring leading operator {token!r} in query {raw!r}")
            else:
                if values['terms']:
                    values['operators'].append(pending_operator or DEFAULT_OPERATOR)
                values['terms'].append(token)
                pending_operator = None

        if pending_operator:
            logger.debug(f"Ignoring trailing operator {pending_operator!r} in query {raw!r}")

        return ParsedQuery(raw=raw, **values)

    def _apply_filter(self, values: Dict[str, Any], key: str, value: str, quoted: bool):
        """Route a filter value to its ParsedQuery attribute."""
        key = key.lower()
        target = self.FILTER_KEYS[key]

        if target == 'entity_types':
            if value not in ENTITY_TYPES:
                raise QueryParseError(
                    f"invalid entity type: {value} "
                    f"(must be one of: {', '.join(ENTITY_TYPES)})"
                )
            values['entity_types'].append(value)
        elif target == 'has_comment':
            values['has_comment'] = value.lower() in _TRUTHY_VALUES
        elif target == 'module_pattern':
            values['module_pattern'] = value
            values['module_exact'] = quoted
        elif target == 'version_constraint':
            values['version_constraint'] = value
        else:
            values[target].append(value)
