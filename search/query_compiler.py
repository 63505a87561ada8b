"""Compiles parsed queries into a full-text expression and filter predicates.

The full-text expression uses a tsquery-style syntax: every term becomes a
prefix match (``user:*``) and terms are joined with ``&`` (and), ``|`` (or)
and ``&!`` (and not). Backing stores that speak another full-text dialect
render the structured :class:`ExpressionTerm` list instead of the string.

Structured filters become :class:`FilterPredicate` objects that a store turns
into parameterized clauses.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .query_parser import ParsedQuery, DEFAULT_OPERATOR

logger = logging.getLogger(__name__)

# Characters the full-text engine treats as operators
RESERVED_OPERATOR_CHARS = frozenset('&|!()<>-:*')

PREFIX_MARKER = ':*'

CONNECTOR_SYMBOLS = {
    'AND': '&',
    'OR': '|',
    'NOT': '&!',
}

# Version constraints that look like ranges are still compared exactly
RANGE_OPERATOR_PATTERN = re.compile(r'^(>=|<=|>|<|~|\^|=)')


def sanitize_term(term: Optional[str]) -> str:
    """
    Sanitize one free-text term for the full-text expression.

    Args:
        term: Raw term from the parsed query

    Returns:
        The term with quotes doubled and the prefix marker appended, or an
        empty string if nothing searchable remains
    """
    if not term:
        return ''

    term = term.strip()
    if not term:
        return ''

    if all(c in RESERVED_OPERATOR_CHARS for c in term):
        return ''

    # Already sanitized
    if term.endswith(PREFIX_MARKER):
        return term

    return term.replace("'", "''") + PREFIX_MARKER


def unsanitize_term(sanitized: str) -> str:
    """Recover the literal text of a sanitized term."""
    if sanitized.endswith(PREFIX_MARKER):
        sanitized = sanitized[:-len(PREFIX_MARKER)]
    return sanitized.replace("''", "'")


@dataclass(frozen=True)
class ExpressionTerm:
    """A sanitized term and the connector joining it to the previous term."""
    text: str
    connector: Optional[str] = None  # None for the first term


def compile_terms(query: ParsedQuery) -> List[ExpressionTerm]:
    """
    Sanitize the query's terms and pair each survivor with its connector.

    A term's connector is the one recorded in the gap right before it; terms
    that sanitize to nothing are dropped together with that gap.
    """
    compiled: List[ExpressionTerm] = []

    for i, term in enumerate(query.terms):
        sanitized = sanitize_term(term)
        if not sanitized:
            logger.debug(f"Dropping unsearchable term {term!r}")
            continue

        if not compiled:
            compiled.append(ExpressionTerm(sanitized))
            continue

        connector = DEFAULT_OPERATOR
        if 0 < i <= len(query.operators):
            connector = query.operators[i - 1] or DEFAULT_OPERATOR
        compiled.append(ExpressionTerm(sanitized, connector))

    return compiled


def render_expression(terms: List[ExpressionTerm]) -> str:
    """Render compiled terms as a tsquery-style expression string."""
    parts = []
    for term in terms:
        if term.connector is not None:
            parts.append(CONNECTOR_SYMBOLS.get(term.connector, CONNECTOR_SYMBOLS[DEFAULT_OPERATOR]))
        parts.append(term.text)
    return ' '.join(parts)


def to_search_expression(query: ParsedQuery) -> str:
    """
    Convert a parsed query's free-text portion into a search expression.

    Returns an empty string when no term is searchable, in which case the
    search is filter-only.
    """
    return render_expression(compile_terms(query))


def wildcard_to_like(pattern: str, escape: str = '\\') -> str:
    """Translate a '*' wildcard pattern into a LIKE pattern."""
    escaped = (
        pattern.replace(escape, escape + escape)
        .replace('%', escape + '%')
        .replace('_', escape + '_')
    )
    return escaped.replace('*', '%')


@dataclass(frozen=True)
class FilterPredicate:
    """One structured filter clause with its parameters."""
    field: str
    op: str
    values: Tuple = ()

    # Filterable fields
    ENTITY_TYPE = 'entity_type'
    FIELD_TYPE = 'field_type'
    MODULE = 'module'
    VERSION = 'version'
    COMMENTS = 'comments'
    IMPORTS = 'imports'
    DEPENDS_ON = 'depends_on'

    # Operators
    IN = 'in'
    EQ = 'eq'
    LIKE = 'like'
    NOT_EMPTY = 'not_empty'


@dataclass
class CompiledQuery:
    """A parsed query ready to execute against an index store."""
    expression: str
    terms: List[ExpressionTerm] = field(default_factory=list)
    predicates: List[FilterPredicate] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_expression(self) -> bool:
        """True when relevance ranking applies."""
        return bool(self.expression)


class QueryCompiler:
    """Turns ParsedQuery objects into CompiledQuery objects."""

    def compile(self, query: ParsedQuery) -> CompiledQuery:
        """
        Compile a parsed query.

        Args:
            query: Output of QueryParser.parse

        Returns:
            CompiledQuery with expression, terms, predicates and warnings
        """
        terms = compile_terms(query)
        predicates, warnings = self.render_predicates(query)

        compiled = CompiledQuery(
            expression=render_expression(terms),
            terms=terms,
            predicates=predicates,
            warnings=warnings
        )
        logger.debug(
            f"Compiled query {query.raw!r}: expression={compiled.expression!r}, "
            f"{len(predicates)} predicate(s)"
        )
        return compiled

    def render_predicates(self, query: ParsedQuery) -> Tuple[List[FilterPredicate], List[str]]:
        """
        Render every populated filter as a predicate.

        Returns:
            Tuple of (predicates, warnings)
        """
        predicates: List[FilterPredicate] = []
        warnings: List[str] = []

        if query.entity_types:
            predicates.append(FilterPredicate(
                FilterPredicate.ENTITY_TYPE, FilterPredicate.IN, tuple(query.entity_types)
            ))

        if query.field_types:
            predicates.append(FilterPredicate(
                FilterPredicate.FIELD_TYPE, FilterPredicate.IN, tuple(query.field_types)
            ))

        if query.module_pattern:
            if '*' in query.module_pattern and not query.module_exact:
                predicates.append(FilterPredicate(
                    FilterPredicate.MODULE, FilterPredicate.LIKE,
                    (wildcard_to_like(query.module_pattern),)
                ))
            else:
                predicates.append(FilterPredicate(
                    FilterPredicate.MODULE, FilterPredicate.EQ, (query.module_pattern,)
                ))

        if query.version_constraint:
            if RANGE_OPERATOR_PATTERN.match(query.version_constraint):
                warnings.append(
                    f"version constraint '{query.version_constraint}' looks like a range; "
                    f"ranges are not supported and it is matched exactly"
                )
            predicates.append(FilterPredicate(
                FilterPredicate.VERSION, FilterPredicate.EQ, (query.version_constraint,)
            ))

        if query.has_comment:
            predicates.append(FilterPredicate(FilterPredicate.COMMENTS, FilterPredicate.NOT_EMPTY))

        if query.imports:
            predicates.append(FilterPredicate(
                FilterPredicate.IMPORTS, FilterPredicate.IN, tuple(query.imports)
            ))

        if query.depends_on:
            predicates.append(FilterPredicate(
                FilterPredicate.DEPENDS_ON, FilterPredicate.IN, tuple(query.depends_on)
            ))

        return predicates, warnings
