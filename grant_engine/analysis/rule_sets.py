"""
Compliance rule-set registry.

Rule sets are trusted configuration: JSON files shipped in grant_engine/rules/
plus an optional RULES_DIR. Each file holds {"id", "name", "rules": [...]}.
Loaded once, then shared read-only across validations.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from grant_engine.core.domain_models import ComplianceRule
from grant_engine.core.errors import GrantEngineError, IncompleteRuleSet, InvalidInput

logger = logging.getLogger(__name__)

PACKAGED_RULES_DIR = Path(__file__).resolve().parent.parent / "rules"


def load_rule_file(path: Path) -> Tuple[str, List[ComplianceRule]]:
    """
    Parse one rule-set file.

    Returns:
        (rule_set_id, rules)

    Raises:
        IncompleteRuleSet: file unreadable or a rule definition is invalid
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise IncompleteRuleSet(f"cannot read rule set {path}: {e}", field="ruleSetId")

    if isinstance(data, list):
        rule_set_id, raw_rules = Path(path).stem, data
    else:
        rule_set_id = str(data.get("id") or Path(path).stem)
        raw_rules = data.get("rules", [])

    rules = []
    for index, raw in enumerate(raw_rules):
        try:
            rules.append(ComplianceRule.from_dict(raw))
        except GrantEngineError as e:
            raise IncompleteRuleSet(f"rule set {rule_set_id}, rule #{index}: {e.reason}",
                                    field=e.field or "rules")
    return rule_set_id, rules


class RuleSetRegistry:
    """
    Rule sets by id.

    Usage:
        registry = RuleSetRegistry(rules_dir="config/rules")
        rules = registry.get("default")
    """

    def __init__(self, rules_dir: Optional[str] = None, packaged_dir: Path = PACKAGED_RULES_DIR):
        self.rules_dir = rules_dir
        self.packaged_dir = packaged_dir
        self._rule_sets: Dict[str, List[ComplianceRule]] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def _load(self) -> None:
        directories = [self.packaged_dir]
        if self.rules_dir:
            directories.append(Path(self.rules_dir))

        for directory in directories:
            if not directory.is_dir():
                logger.warning(f"Rules directory not found: {directory}")
                continue
            for path in sorted(directory.glob("*.json")):
                rule_set_id, rules = load_rule_file(path)
                # Later directories override packaged sets with the same id
                self._rule_sets[rule_set_id] = rules
                logger.info(f"Loaded rule set '{rule_set_id}' ({len(rules)} rules) from {path.name}")

    def _ensure_loaded(self) -> None:
        with self._lock:
            if not self._loaded:
                self._load()
                self._loaded = True

    def register(self, rule_set_id: str, rules: List[ComplianceRule]) -> None:
        """Register (or replace) a rule set in memory."""
        self._ensure_loaded()
        with self._lock:
            self._rule_sets[rule_set_id] = list(rules)
        logger.debug(f"Registered rule set '{rule_set_id}' ({len(rules)} rules)")

    def get(self, rule_set_id: str) -> List[ComplianceRule]:
        """
        Raises:
            InvalidInput: unknown rule set id
        """
        self._ensure_loaded()
        with self._lock:
            rules = self._rule_sets.get(rule_set_id)
        if rules is None:
            raise InvalidInput(
                f"unknown rule set {rule_set_id!r}; available: {', '.join(self.ids()) or 'none'}",
                field="ruleSetId",
            )
        return rules

    def ids(self) -> List[str]:
        self._ensure_loaded()
        with self._lock:
            return sorted(self._rule_sets)
