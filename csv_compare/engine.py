"""
Reconciliation engine.

Pairs rows of a first table with rows of a second table using an ordered
list of column-equality rules:

- each first-table row is visited once, in index order
- rules are tried in priority order; the first rule that finds an available
  second-table row wins and later rules are not consulted
- within a rule the lowest-index available second-table row wins (first fit)
- a second-table row is consumed by its match and never paired again
- a blank or absent first-table value never matches, not even a blank cell

The result depends on row order in both tables and on rule order. Permuting
second-table rows can change which specific pairing is chosen.

Worst case cost is O(rows1 x rules x rows2).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from pydantic import ValidationError

from .errors import EmptyRulesError, ReconciliationInputError
from .models import ComparisonRule, Match, MatchStatistics, ReconciliationResult, UnmatchedRecord
from .normalize import normalize_value
from .tabular import Row, Table

logger = logging.getLogger(__name__)


def build_rules(raw_rules: Optional[Sequence[Any]]) -> List[ComparisonRule]:
    """Validate a client-supplied rule list, keeping its order."""
    if not raw_rules:
        raise EmptyRulesError("At least one comparison rule is required")

    rules: List[ComparisonRule] = []
    for position, raw in enumerate(raw_rules, start=1):
        if isinstance(raw, ComparisonRule):
            rules.append(raw)
            continue
        try:
            rules.append(ComparisonRule.model_validate(raw))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'rule'}: {error['msg']}"
                for error in exc.errors()
            )
            raise ReconciliationInputError(f"Invalid comparison rule #{position}: {problems}") from exc
    return rules


def derive_statistics(
    matches: Sequence[Match],
    unmatched: Sequence[UnmatchedRecord],
    first_total: int,
    second_total: int,
) -> MatchStatistics:
    match_count = len(matches)
    unmatched_count = len(unmatched)
    if match_count + unmatched_count != first_total:
        raise ValueError(
            f"{match_count} matches + {unmatched_count} unmatched does not cover {first_total} rows"
        )

    # An empty first table has a rate of zero, not an undefined one.
    rate = round(match_count / first_total * 100, 2) if first_total > 0 else 0.0

    return MatchStatistics(
        first_total=first_total,
        second_total=second_total,
        match_count=match_count,
        unmatched_count=unmatched_count,
        match_rate_percent=rate,
    )


class _SecondTableKeys:
    """Normalized second-table columns, computed on first use within one run."""

    def __init__(self, table: Table):
        self._table = table
        self._columns: Dict[str, List[str]] = {}

    def column(self, name: str) -> List[str]:
        keys = self._columns.get(name)
        if keys is None:
            keys = [normalize_value(row.get(name)) for row in self._table.rows]
            self._columns[name] = keys
        return keys


def _first_fit(
    index: int,
    row: Row,
    second: Table,
    rules: Sequence[ComparisonRule],
    consumed: Set[int],
    keys: _SecondTableKeys,
) -> Optional[Match]:
    for rule in rules:
        key = normalize_value(row.get(rule.column1))
        if not key:
            continue

        for candidate_index, candidate_key in enumerate(keys.column(rule.column2)):
            if candidate_index in consumed:
                continue
            if candidate_key == key:
                return Match(
                    first_row_index=index,
                    second_row_index=candidate_index,
                    rule_name=rule.name,
                    column1=rule.column1,
                    column2=rule.column2,
                    normalized_value=key,
                    first_row_data=dict(row),
                    second_row_data=dict(second.rows[candidate_index]),
                )
    return None


def reconcile(first: Table, second: Table, rules: Sequence[ComparisonRule]) -> ReconciliationResult:
    """
    Match ``first`` against ``second`` under ``rules`` (highest priority first).

    Every first-table row ends up in exactly one of ``matches`` or
    ``unmatched``; no second-table row appears in more than one match.
    """
    if not rules:
        raise EmptyRulesError("At least one comparison rule is required")

    consumed: Set[int] = set()
    keys = _SecondTableKeys(second)
    matches: List[Match] = []
    unmatched: List[UnmatchedRecord] = []

    for index, row in enumerate(first.rows):
        match = _first_fit(index, row, second, rules, consumed, keys)
        if match is None:
            unmatched.append(UnmatchedRecord(row_index=index, data=dict(row)))
            continue
        consumed.add(match.second_row_index)
        matches.append(match)

    statistics = derive_statistics(matches, unmatched, len(first.rows), len(second.rows))

    logger.info(
        f"Reconciled {statistics.first_total} rows against {statistics.second_total}: "
        f"{statistics.match_count} matched, {statistics.unmatched_count} unmatched "
        f"({statistics.match_rate_percent:.2f}%)"
    )
    if logger.isEnabledFor(logging.DEBUG):
        by_rule: Dict[str, int] = {}
        for match in matches:
            by_rule[match.rule_name] = by_rule.get(match.rule_name, 0) + 1
        logger.debug(f"Matches per rule: {by_rule}")

    return ReconciliationResult(
        matches=matches,
        unmatched=unmatched,
        statistics=statistics,
        first_header=list(first.header),
        second_header=list(second.header),
    )
