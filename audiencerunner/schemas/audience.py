"""
Audience job variants and the composable rule tree.

AudienceCreateJob and AudienceUpdateJob are Jobs carrying the parameters an
audience service needs. The scheduling core treats those parameters as an
opaque payload; it only has to carry them through the wire round trip.

Rules form a tree:

    AudienceRule(relationship=AND, rules=[
        RuleTerm("u1", "EQUALS", "checkout"),
        AudienceRule(relationship=OR, rules=[...]),
    ])

compose_rules() builds groups and to_expression() renders them as a filter
expression string.
"""

from enum import Enum
from typing import Any, Optional, Union

from .job import Job, JobType, LogItem


class Relationship(str, Enum):
    """Logical relationship between the rules of a group."""
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: Any) -> "Relationship":
        """Parse a wire relationship, defaulting to AND when unspecified."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.AND
        return cls(str(value).upper())


_OPERATOR_SYMBOLS = {
    "EQUALS": "==",
    "NOT_EQUALS": "!=",
    "GREATER_THAN": ">",
    "GREATER_THAN_OR_EQUAL": ">=",
    "LESS_THAN": "<",
    "LESS_THAN_OR_EQUAL": "<=",
}


class RuleTerm:
    """A single comparison against a floodlight custom variable."""

    def __init__(self, variable: str, operator: str = "EQUALS", value: Any = None, negation: bool = False):
        if not isinstance(operator, str):
            raise ValueError(f"Rule operator must be a string, got {operator!r}")
        self.variable = variable
        self.operator = operator.upper()
        self.value = value
        self.negation = negation

    def to_expression(self) -> str:
        symbol = _OPERATOR_SYMBOLS.get(self.operator, self.operator)
        value = f'"{self.value}"' if isinstance(self.value, str) else str(self.value)
        expression = f"{self.variable} {symbol} {value}"
        return f"NOT {expression}" if self.negation else expression

    def to_dict(self) -> dict[str, Any]:
        return {
            "variable": self.variable,
            "operator": self.operator,
            "value": self.value,
            "negation": self.negation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuleTerm":
        return cls(
            variable=data.get("variable"),
            operator=data.get("operator") or "EQUALS",
            value=data.get("value"),
            negation=bool(data.get("negation", False)),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RuleTerm):
            return NotImplemented
        return self.to_dict() == other.to_dict()


Rule = Union[RuleTerm, "AudienceRule"]


class AudienceRule:
    """A group of rules joined by a single relationship."""

    def __init__(self, relationship: Relationship = Relationship.AND, rules: Optional[list[Rule]] = None):
        self.relationship = Relationship.parse(relationship)
        self.rules: list[Rule] = list(rules) if rules else []

    def add(self, rule: Rule) -> "AudienceRule":
        self.rules.append(rule)
        return self

    def to_expression(self) -> str:
        """Render the group, e.g. (u1 == "a" AND (u2 > 3 OR u3 != "b"))."""
        if not self.rules:
            return ""
        joiner = f" {self.relationship.value} "
        return "(" + joiner.join(rule.to_expression() for rule in self.rules) + ")"

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationship": self.relationship.value,
            "rules": [rule.to_dict() for rule in self.rules],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AudienceRule":
        return cls(
            relationship=Relationship.parse(data.get("relationship")),
            rules=[rule_from_dict(item) for item in data.get("rules") or []],
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AudienceRule):
            return NotImplemented
        return self.to_dict() == other.to_dict()


def rule_from_dict(data: dict[str, Any]) -> Rule:
    """Decode a rule item: groups carry a rules list, anything else is a term."""
    if not isinstance(data, dict):
        raise ValueError(f"Rule must be an object, got {data!r}")
    if "rules" in data:
        return AudienceRule.from_dict(data)
    return RuleTerm.from_dict(data)


def compose_rules(*rules: Rule, relationship: Relationship = Relationship.AND) -> AudienceRule:
    """
    Build a rule group from terms and groups.

    Nested groups with the same relationship are flattened into the new
    group, so compose_rules(a, compose_rules(b, c)) == compose_rules(a, b, c).
    """
    relationship = Relationship.parse(relationship)
    group = AudienceRule(relationship)
    for rule in rules:
        if isinstance(rule, AudienceRule) and rule.relationship == relationship:
            group.rules.extend(rule.rules)
        else:
            group.add(rule)
    return group


class AudienceCreateJob(Job):
    """Create one audience."""

    job_type = JobType.AUDIENCE_CREATE
    REQUIRED_FIELDS = ("name", "floodlight_id")

    def __init__(
        self,
        id: Optional[int] = None,
        index: int = 0,
        logs: Optional[list[LogItem]] = None,
        jobs: Optional[list[Job]] = None,
        offset: int = 0,
        error_message: str = "",
        auto_run: bool = False,
        name: Optional[str] = None,
        description: str = "",
        lifespan: Optional[int] = None,
        floodlight_id: Optional[str] = None,
        shared: bool = False,
        audience_id: Optional[str] = None,
        rule: Optional[AudienceRule] = None,
        raw_rule: Optional[dict[str, Any]] = None,
        rule_error: str = "",
    ):
        super().__init__(id, index, logs, jobs, offset, error_message, auto_run)
        self.name = name
        self.description = description
        self.lifespan = lifespan
        self.floodlight_id = floodlight_id
        self.shared = shared
        self.audience_id = audience_id
        self.rule = rule
        # Undecodable wire rules, kept verbatim
        self.raw_rule = raw_rule
        self.rule_error = rule_error

    def missing_fields(self) -> list[str]:
        return [f for f in self.REQUIRED_FIELDS if getattr(self, f) in (None, "")]

    def invalid_fields(self) -> list[str]:
        """Fields that were present but could not be decoded."""
        return [f"rules: {self.rule_error}"] if self.rule_error else []

    def params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "lifespan": self.lifespan,
            "floodlight_id": self.floodlight_id,
            "shared": self.shared,
            "audience_id": self.audience_id,
            "rules": [],
        }
        if self.rule is not None:
            params.update(self.rule.to_dict())
        elif self.raw_rule is not None:
            params.update(self.raw_rule)
        return params

    def _label(self) -> str:
        return f"Create audience {self.name or self.id}"


class AudienceUpdateJob(Job):
    """Update attributes of an existing audience."""

    job_type = JobType.AUDIENCE_UPDATE
    REQUIRED_FIELDS = ("audience_id",)

    def __init__(
        self,
        id: Optional[int] = None,
        index: int = 0,
        logs: Optional[list[LogItem]] = None,
        jobs: Optional[list[Job]] = None,
        offset: int = 0,
        error_message: str = "",
        auto_run: bool = False,
        audience_id: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        lifespan: Optional[int] = None,
        changed_attributes: Optional[list[str]] = None,
        shared: bool = False,
    ):
        super().__init__(id, index, logs, jobs, offset, error_message, auto_run)
        self.audience_id = audience_id
        self.name = name
        self.description = description
        self.lifespan = lifespan
        self.changed_attributes: list[str] = list(changed_attributes) if changed_attributes else []
        self.shared = shared

    def missing_fields(self) -> list[str]:
        return [f for f in self.REQUIRED_FIELDS if getattr(self, f) in (None, "")]

    def invalid_fields(self) -> list[str]:
        return []

    def params(self) -> dict[str, Any]:
        return {
            "audience_id": self.audience_id,
            "name": self.name,
            "description": self.description,
            "lifespan": self.lifespan,
            "changed_attributes": list(self.changed_attributes),
            "shared": self.shared,
        }

    def _label(self) -> str:
        return f"Update audience {self.audience_id or self.id}"
