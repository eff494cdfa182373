"""
Rules - stateless predicates over the current frame that yield tasks.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Type

from skrapr.core.errors import DefinitionError
from skrapr.core.models import FrameState
from skrapr.tasks import SkraprTask, task_from_dict


class SkraprRule:
    """Base class for rules. Subclasses implement matches()."""

    type: ClassVar[str] = "rule"
    tasks: List[SkraprTask]
    name: Optional[str] = None

    def matches(self, state: FrameState) -> bool:
        raise NotImplementedError

    def create_tasks(self, state: FrameState) -> List[SkraprTask]:
        return list(self.tasks)

    def describe(self) -> str:
        return self.name or self.type


@dataclass
class UrlPatternRule(SkraprRule):
    """Matches when the regular expression is found in the current URL."""

    type: ClassVar[str] = "url"

    pattern: str
    tasks: List[SkraprTask] = field(default_factory=list)
    require_loaded: bool = True
    name: Optional[str] = None

    def __post_init__(self):
        self._regex = re.compile(self.pattern)

    def matches(self, state: FrameState) -> bool:
        if self.require_loaded and state.is_loading:
            return False
        return self._regex.search(state.url) is not None

    def describe(self) -> str:
        return self.name or f"url~{self.pattern}"


@dataclass
class PredicateRule(SkraprRule):
    """Matches when an arbitrary callable says so. For rules built in code."""

    type: ClassVar[str] = "predicate"

    predicate: Callable[[FrameState], bool]
    tasks: List[SkraprTask] = field(default_factory=list)
    name: Optional[str] = None

    def matches(self, state: FrameState) -> bool:
        return bool(self.predicate(state))


RULE_TYPES: Dict[str, Type[SkraprRule]] = {
    UrlPatternRule.type: UrlPatternRule,
}


def rule_from_dict(data: Mapping[str, Any]) -> SkraprRule:
    """
    Build a rule from its definition entry.

    Raises:
        DefinitionError: If the type is unknown or the entry is invalid.
    """
    values = dict(data)
    type_name = values.pop("type", UrlPatternRule.type)
    if type_name not in RULE_TYPES:
        raise DefinitionError(f"Unknown rule type: {type_name!r}")

    raw_tasks = values.pop("tasks", [])
    if not isinstance(raw_tasks, list):
        raise DefinitionError("Rule tasks must be a list")
    tasks = [task_from_dict(task) for task in raw_tasks]

    pattern = values.pop("pattern", None)
    if not isinstance(pattern, str):
        raise DefinitionError("url rule requires a string pattern")

    unknown = sorted(set(values) - {"require_loaded", "name"})
    if unknown:
        raise DefinitionError(f"Unknown fields for url rule: {', '.join(unknown)}")

    try:
        return UrlPatternRule(pattern=pattern, tasks=tasks, **values)
    except re.error as e:
        raise DefinitionError(f"Invalid url pattern {pattern!r}: {e}") from e
