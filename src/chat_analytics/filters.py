"""Time filters and WHERE clause construction for message queries."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TimeFilter:
    """Inclusive timestamp bounds in seconds since epoch; either may be omitted."""

    start_ts: int | None = None
    end_ts: int | None = None

    @classmethod
    def from_dict(cls, raw: dict | None) -> TimeFilter | None:
        """Build a filter from a dict with start_ts/end_ts (or startTs/endTs) keys."""
        if not raw:
            return None
        start = raw.get("start_ts", raw.get("startTs"))
        end = raw.get("end_ts", raw.get("endTs"))
        return cls(
            start_ts=int(start) if start is not None else None,
            end_ts=int(end) if end is not None else None,
        )


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so the term matches literally (ESCAPE '\\')."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class WhereClause:
    """Accumulates AND-ed SQL conditions and their parameters.

    Condition text always comes from this module or the calling query code;
    every caller-supplied value is bound through a ``?`` placeholder.

    Usage:
        clause = WhereClause().time_range(time_filter).exclude_sender(name)
        where, params = clause.build()
    """

    conditions: list[str] = field(default_factory=list)
    params: list = field(default_factory=list)

    def where(self, condition: str, *params) -> WhereClause:
        """Add a raw condition with its placeholder values."""
        self.conditions.append(condition)
        self.params.extend(params)
        return self

    def time_range(self, time_filter: TimeFilter | None, column: str = "msg.ts") -> WhereClause:
        if time_filter is None:
            return self
        if time_filter.start_ts is not None:
            self.where(f"{column} >= ?", time_filter.start_ts)
        if time_filter.end_ts is not None:
            self.where(f"{column} <= ?", time_filter.end_ts)
        return self

    def exclude_sender(self, name: str | None, column: str = "m.name") -> WhereClause:
        if name is None:
            return self
        return self.where(f"{column} != ?", name)

    def sender(self, sender_id: int | None, column: str = "msg.sender_id") -> WhereClause:
        if sender_id is None:
            return self
        return self.where(f"{column} = ?", sender_id)

    def any_substring(self, terms: list[str] | None, column: str = "msg.content") -> WhereClause:
        """OR-combined substring match; an empty term list adds nothing."""
        if not terms:
            return self
        ors = " OR ".join(f"{column} LIKE ? ESCAPE '\\'" for _ in terms)
        return self.where(f"({ors})", *(f"%{escape_like(t)}%" for t in terms))

    def non_empty(self, column: str = "msg.content") -> WhereClause:
        return self.where(f"{column} IS NOT NULL AND {column} != ''")

    def build(self) -> tuple[str, list]:
        """Return (where_clause_string, params_list); '1=1' when empty."""
        where_clause = " AND ".join(self.conditions) if self.conditions else "1=1"
        return where_clause, list(self.params)
