"""
Scrape definitions - the start URLs and rules that drive a run, loaded from JSON.

Example:
    {
        "name": "example",
        "start_urls": ["https://example.com/login"],
        "rules": [
            {
                "type": "url",
                "pattern": "/dashboard",
                "tasks": [
                    {"type": "scroll_to_bottom", "max_scrolls": 5},
                    {"type": "screenshot", "path": "out/dashboard.png"}
                ]
            }
        ]
    }
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Union

from skrapr.core.errors import DefinitionError
from skrapr.rules import SkraprRule, rule_from_dict

logger = logging.getLogger("skrapr")


@dataclass
class SkraprDefinition:
    name: str = "skrapr"
    start_urls: List[str] = field(default_factory=list)
    rules: List[SkraprRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SkraprDefinition:
        if not isinstance(data, Mapping):
            raise DefinitionError("Definition must be a JSON object")

        start_urls = data.get("start_urls", [])
        if not isinstance(start_urls, list) or not all(isinstance(u, str) and u for u in start_urls):
            raise DefinitionError("start_urls must be a list of non-empty strings")

        raw_rules = data.get("rules", [])
        if not isinstance(raw_rules, list):
            raise DefinitionError("rules must be a list")

        rules: List[SkraprRule] = []
        for index, raw_rule in enumerate(raw_rules):
            if not isinstance(raw_rule, Mapping):
                raise DefinitionError(f"Rule #{index} must be an object")
            rules.append(rule_from_dict(raw_rule))

        return cls(
            name=str(data.get("name") or "skrapr"),
            start_urls=list(start_urls),
            rules=rules,
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> SkraprDefinition:
        """
        Read a definition file.

        Raises:
            DefinitionError: If the file is missing, not JSON, or malformed.
        """
        definition_path = Path(path)
        if not definition_path.is_file():
            raise DefinitionError(
                f"The specified skrapr definition ({definition_path}) could not be found. "
                "Please check that the skrapr definition exists."
            )

        try:
            data = json.loads(definition_path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise DefinitionError(f"Definition {definition_path} is not valid JSON: {e}") from e

        definition = cls.from_dict(data)
        logger.debug(
            f"Loaded definition {definition.name!r} with {len(definition.start_urls)} start urls "
            f"and {len(definition.rules)} rules"
        )
        return definition
