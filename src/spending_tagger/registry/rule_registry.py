import logging
import re
import threading
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from spending_tagger.config.settings import ConfigLoader
from spending_tagger.domain.conditions import field_match, regex
from spending_tagger.domain.enums import Field, RuleSource, RuleType
from spending_tagger.domain.errors import (
    MappingFormatError,
    MappingValidationError,
    RuleNotFoundError,
)
from spending_tagger.domain.rules import LearnedRule, Rule, RuleResult
from spending_tagger.storage.base import KeyValueStore
from spending_tagger.storage.memory_store import InMemoryKeyValueStore

logger = logging.getLogger(__name__)

TAG_MAPPING_KEY = "tag_mapping"
CUSTOM_RULES_KEY = "custom_rules"
LEARNED_RULES_KEY = "learned_rules"

USER_MAPPING_CONFIDENCE = 0.9

# tag_rules section -> (mapping category, tag, sections to extract)
_EXTRACTED_TAG_RULES = (
    ("savings", "savings", "Savings", ("keywords", "subcategories")),
    ("transfers", "transfers", "Transfers", ("keywords", "subcategories")),
    ("investments", "investment", "Investments", ("keywords", "subcategories")),
    ("income", "income", "Income", ("keywords",)),
)

CategoryMapping = Dict[str, Dict[str, str]]


def _key(value: str) -> str:
    return value.strip().lower()


@dataclass(frozen=True)
class RegistrySnapshot:
    """
    Immutable view of every rule that can influence a classification.

    Classification is a pure function of a transaction and one of these.
    """
    special_rules: Tuple[Rule, ...]
    user_mapping: Mapping[str, Mapping[str, str]]
    learned_rules: Tuple[LearnedRule, ...]
    category_rules: Tuple[Rule, ...]

    def lookup(self, category: str, subcategory: str) -> Optional[str]:
        """Exact, case-insensitive (category, subcategory) lookup"""
        subcategories = self.user_mapping.get(_key(category or ""))
        if not subcategories:
            return None
        return subcategories.get(_key(subcategory or ""))


class RuleRegistry:
    """
    Owns the merged rule set.

    - System rules come from the packaged `rules.json` and never change
      at runtime.
    - User entries (the category mapping and custom special rules) and
      learned rules are persisted through a KeyValueStore.

    Every mutation is an atomic read-modify-write under one lock, and
    `snapshot()` hands classifiers a frozen view.

    Usage:
        ```
        registry = RuleRegistry(store=SQLiteKeyValueStore(db_manager))
        registry.add_mapping("Other", "Credit card", "Other")
        classifier = Classifier(registry)
        ```
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        system_config: Optional[Dict[str, Any]] = None,
        default_mapping: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the registry.

        Args:
            store: Persistence collaborator. Defaults to an in-memory store.
            system_config: System rules. If None, loads `rules.json` through
                the ConfigLoader. Useful for testing with custom rules.
            default_mapping: System default category mapping. If None, loads
                `tag_mapping.json`.
        """
        self._store = store if store is not None else InMemoryKeyValueStore()
        self.system_config = (
            system_config if system_config is not None else ConfigLoader.load_rules_config()
        )
        if default_mapping is None:
            default_mapping = ConfigLoader.load_tag_mapping_config()

        self._lock = threading.RLock()
        self._snapshot: Optional[RegistrySnapshot] = None
        self._learned_dirty = False

        self._system_special_rules = _special_rules(self.system_config.get("special_rules", []))
        self._category_rules = _category_rules(self.system_config.get("category_rules", []))
        self._default_mapping = _mapping_or_empty(default_mapping, "system default mapping")

        self._mapping = _mapping_or_empty(self._store.get(TAG_MAPPING_KEY), "stored tag mapping")
        self._custom_rules = self._load_custom_rules()
        self._learned_rules = self._load_learned_rules()

    @property
    def store(self) -> KeyValueStore:
        return self._store

    # ------------------------------------------------------------------
    # Category mapping
    # ------------------------------------------------------------------

    def add_mapping(self, category: str, subcategory: str, tag: str) -> None:
        """
        Insert or overwrite a user mapping entry.

        Args:
            category: Category (case-insensitive key)
            subcategory: Subcategory (case-insensitive key)
            tag: Tag shown to the user

        Raises:
            MappingValidationError: If any argument is empty
        """
        category, subcategory, tag = _validated_entry(category, subcategory, tag)

        with self._lock:
            self._mapping.setdefault(_key(category), {})[_key(subcategory)] = tag
            self._persist_mapping()

        logger.info("Mapping added: %s/%s -> %s", category, subcategory, tag)

    def remove_mapping(self, category: str, subcategory: str) -> None:
        """
        Delete a user mapping entry; an emptied category is dropped too.

        Raises:
            RuleNotFoundError: If no such entry exists
        """
        category_key = _key(category or "")
        subcategory_key = _key(subcategory or "")

        with self._lock:
            subcategories = self._mapping.get(category_key)
            if not subcategories or subcategory_key not in subcategories:
                raise RuleNotFoundError(f"No mapping for '{category}/{subcategory}'")

            del subcategories[subcategory_key]
            if not subcategories:
                del self._mapping[category_key]
            self._persist_mapping()

        logger.info("Mapping removed: %s/%s", category, subcategory)

    def lookup(self, category: str, subcategory: str) -> Optional[str]:
        """User-defined tag for a (category, subcategory) pair, if any"""
        with self._lock:
            return self._mapping.get(_key(category or ""), {}).get(_key(subcategory or ""))

    def export_mapping(self) -> CategoryMapping:
        """User mapping as a `{category: {subcategory: tag}}` tree"""
        with self._lock:
            return _copy_mapping(self._mapping)

    def import_mapping(self, payload: Any, reset: bool = False) -> int:
        """
        Merge a `{category: {subcategory: tag}}` tree into the user mapping.

        The payload is validated in full first, so a malformed payload
        never leaves a partial merge behind.

        Args:
            payload: Parsed JSON object
            reset: Replace the user mapping instead of merging into it

        Returns:
            Number of entries imported

        Raises:
            MappingFormatError: If the payload is not a valid mapping tree
        """
        incoming = _parse_mapping(payload)

        with self._lock:
            if reset:
                self._mapping = {}
            _merge_into(self._mapping, incoming)
            self._persist_mapping()

        count = sum(len(subcategories) for subcategories in incoming.values())
        logger.info("Imported %d mapping entries (reset=%s)", count, reset)
        return count

    def effective_mapping(self) -> CategoryMapping:
        """System default mapping overlaid with the user mapping"""
        with self._lock:
            merged = _copy_mapping(self._default_mapping)
            _merge_into(merged, self._mapping)
            return merged

    def extract_and_merge_all_rules(self) -> CategoryMapping:
        """
        Turn the built-in rules into editable mapping entries.

        Category-assignment rules become `category/subcategory -> tag`
        entries (the tag is picked by the configured category hints), and
        the Savings/Transfers/Investments/Income keyword and subcategory
        lists become entries under their own category. Existing user
        entries win on conflicts. The merged mapping is persisted.

        Returns:
            The merged user mapping
        """
        extracted = self._extract_system_mapping()

        with self._lock:
            merged = _copy_mapping(extracted)
            _merge_into(merged, self._mapping)
            self._mapping = merged
            self._persist_mapping()
            result = _copy_mapping(self._mapping)

        count = sum(len(subcategories) for subcategories in extracted.values())
        logger.info("Extracted %d system rule entries into the user mapping", count)
        return result

    def _extract_system_mapping(self) -> CategoryMapping:
        hints = [
            (str(hint).lower(), str(tag))
            for hint, tag in self.system_config.get("category_tag_hints", [])
        ]
        extracted: CategoryMapping = {}

        for rule in self._category_rules:
            category = rule.result.category
            subcategory = rule.result.subcategory
            if not category or not subcategory:
                continue
            category_key = _key(category)
            tag = next((t for hint, t in hints if hint in category_key), "Other")
            extracted.setdefault(category_key, {})[_key(subcategory)] = tag

        tag_rules = self.system_config.get("tag_rules", {})
        for section, category_key, default_tag, fields in _EXTRACTED_TAG_RULES:
            config = tag_rules.get(section)
            if not config:
                continue
            tag = config.get("tag", default_tag)
            for field_name in fields:
                for value in config.get(field_name, []):
                    extracted.setdefault(category_key, {})[_key(value)] = tag

        return extracted

    # ------------------------------------------------------------------
    # Declarative rules
    # ------------------------------------------------------------------

    @property
    def special_rules(self) -> List[Rule]:
        """Tier-0 rules: system rules first, then custom rules"""
        with self._lock:
            return self._system_special_rules + list(self._custom_rules)

    @property
    def category_rules(self) -> List[Rule]:
        return list(self._category_rules)

    def rules(self) -> List[Rule]:
        """
        Every declarative rule the registry owns, in tier order.

        User mapping entries are listed as tier-2 category_mapping rules.
        """
        with self._lock:
            mapping_rules = [
                _mapping_rule(category, subcategory, tag)
                for category, subcategories in sorted(self._mapping.items())
                for subcategory, tag in sorted(subcategories.items())
            ]
            return self.special_rules + mapping_rules + list(self._category_rules)

    def add_rule(self, rule: Rule) -> None:
        """
        Add or replace a custom special (tier-0) rule.

        Raises:
            ValueError: If the rule is not a tier-0 rule, has no conditions
                or assigns no tag
        """
        if rule.tier != 0:
            raise ValueError(f"Only tier-0 rules can be added, got tier {rule.tier}")
        if not rule.conditions:
            raise ValueError(f"Rule '{rule.id}' has no conditions")
        if not (rule.result.tag or "").strip():
            raise ValueError(f"Rule '{rule.id}' assigns no tag")

        rule = replace(rule, source=RuleSource.USER)
        with self._lock:
            self._custom_rules = [r for r in self._custom_rules if r.id != rule.id]
            self._custom_rules.append(rule)
            self._persist_custom_rules()

        logger.info("Custom rule added: %r", rule)

    def remove_rule(self, rule_id: str) -> None:
        """
        Remove a custom special rule.

        Raises:
            RuleNotFoundError: If no custom rule has this id
        """
        with self._lock:
            remaining = [r for r in self._custom_rules if r.id != rule_id]
            if len(remaining) == len(self._custom_rules):
                raise RuleNotFoundError(f"No custom rule with id '{rule_id}'")
            self._custom_rules = remaining
            self._persist_custom_rules()

        logger.info("Custom rule removed: %s", rule_id)

    # ------------------------------------------------------------------
    # Learned rules
    # ------------------------------------------------------------------

    @property
    def learned_rules(self) -> List[LearnedRule]:
        with self._lock:
            return [rule.copy() for rule in self._learned_rules]

    def replace_learned_rule(self, rule: LearnedRule) -> None:
        """Store a learned rule, replacing any prior rule for the same tag"""
        with self._lock:
            self._learned_rules = [
                r for r in self._learned_rules if _key(r.tag) != _key(rule.tag)
            ]
            self._learned_rules.append(rule.copy())
            self._persist_learned_rules()

    def set_learned_rules(self, rules: Iterable[LearnedRule]) -> None:
        with self._lock:
            self._learned_rules = [rule.copy() for rule in rules]
            self._persist_learned_rules()

    def record_learned_rule_usage(self, rule_id: str, timestamp: str) -> None:
        """
        Bump a learned rule's usage statistics.

        Kept in memory until `flush()` or the next learned-rule mutation,
        so bulk runs do not write once per transaction.
        """
        with self._lock:
            for rule in self._learned_rules:
                if rule.id == rule_id:
                    rule.usage_count += 1
                    rule.last_used = timestamp
                    self._learned_dirty = True
                    return
        logger.debug("Usage recorded for unknown learned rule '%s'", rule_id)

    def flush(self) -> None:
        """Persist pending learned-rule usage statistics"""
        with self._lock:
            if self._learned_dirty:
                self._persist_learned_rules()

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def reset_to_defaults(self) -> None:
        """Drop every user mapping entry, custom rule and learned rule"""
        with self._lock:
            self._mapping = {}
            self._custom_rules = []
            self._learned_rules = []
            self._learned_dirty = False
            self._snapshot = None
            for key in (TAG_MAPPING_KEY, CUSTOM_RULES_KEY, LEARNED_RULES_KEY):
                self._store.delete(key)

        logger.info("Rule registry reset to system defaults")

    def snapshot(self) -> RegistrySnapshot:
        """Frozen view of the current rules; cached until the next mutation"""
        with self._lock:
            if self._snapshot is None:
                self._snapshot = RegistrySnapshot(
                    special_rules=tuple(self.special_rules),
                    user_mapping=MappingProxyType({
                        category: MappingProxyType(dict(subcategories))
                        for category, subcategories in self._mapping.items()
                    }),
                    learned_rules=tuple(rule.copy() for rule in self._learned_rules),
                    category_rules=tuple(self._category_rules),
                )
            return self._snapshot

    def _persist_mapping(self) -> None:
        self._snapshot = None
        self._store.set(TAG_MAPPING_KEY, self._mapping)

    def _persist_custom_rules(self) -> None:
        self._snapshot = None
        self._store.set(CUSTOM_RULES_KEY, [rule.to_dict() for rule in self._custom_rules])

    def _persist_learned_rules(self) -> None:
        self._snapshot = None
        self._learned_dirty = False
        self._store.set(LEARNED_RULES_KEY, [rule.to_dict() for rule in self._learned_rules])

    def _load_custom_rules(self) -> List[Rule]:
        rules = []
        for data in _list_or_empty(self._store.get(CUSTOM_RULES_KEY), "custom rules"):
            try:
                rules.append(Rule.from_dict(data))
            except (KeyError, ValueError, TypeError, AttributeError, re.error) as e:
                logger.warning("Skipping corrupt custom rule %r: %s", data, e)
        return rules

    def _load_learned_rules(self) -> List[LearnedRule]:
        rules = []
        for data in _list_or_empty(self._store.get(LEARNED_RULES_KEY), "learned rules"):
            try:
                rules.append(LearnedRule.from_dict(data))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping corrupt learned rule %r: %s", data, e)
        return rules

    def __repr__(self) -> str:
        entries = sum(len(s) for s in self._mapping.values())
        return (
            f"RuleRegistry({entries} mapping entries, {len(self._custom_rules)} custom rules, "
            f"{len(self._learned_rules)} learned rules)"
        )


def _validated_entry(category: Any, subcategory: Any, tag: Any) -> Tuple[str, str, str]:
    values = []
    for name, value in (("category", category), ("subcategory", subcategory), ("tag", tag)):
        if not isinstance(value, str) or not value.strip():
            raise MappingValidationError(f"Mapping {name} must be a non-empty string")
        values.append(value.strip())
    return values[0], values[1], values[2]


def _parse_mapping(payload: Any) -> CategoryMapping:
    """Validate and normalize a mapping tree without touching any state"""
    if not isinstance(payload, dict):
        raise MappingFormatError(
            f"Mapping must be a JSON object, got {type(payload).__name__}"
        )

    parsed: CategoryMapping = {}
    for category, subcategories in payload.items():
        if not isinstance(subcategories, dict):
            raise MappingFormatError(f"Category '{category}' must map to an object")
        for subcategory, tag in subcategories.items():
            try:
                category_, subcategory_, tag_ = _validated_entry(category, subcategory, tag)
            except MappingValidationError as e:
                raise MappingFormatError(f"Invalid entry '{category}/{subcategory}': {e}") from e
            parsed.setdefault(_key(category_), {})[_key(subcategory_)] = tag_
    return parsed


def _mapping_or_empty(value: Any, label: str) -> CategoryMapping:
    if value is None:
        return {}
    try:
        return _parse_mapping(value)
    except MappingFormatError as e:
        logger.warning("Ignoring corrupt %s: %s", label, e)
        return {}


def _list_or_empty(value: Any, label: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning("Ignoring corrupt %s: expected a list, got %s", label, type(value).__name__)
        return []
    return value


def _merge_into(target: CategoryMapping, source: CategoryMapping) -> None:
    for category, subcategories in source.items():
        target.setdefault(category, {}).update(subcategories)


def _copy_mapping(mapping: Mapping[str, Mapping[str, str]]) -> CategoryMapping:
    return {category: dict(subcategories) for category, subcategories in mapping.items()}


def _mapping_rule(category: str, subcategory: str, tag: str) -> Rule:
    return Rule(
        id=f"mapping:{category}/{subcategory}",
        tier=2,
        type=RuleType.CATEGORY_MAPPING,
        conditions=[
            field_match([category], Field.CATEGORY),
            field_match([subcategory], Field.SUBCATEGORY),
        ],
        result=RuleResult(tag=tag),
        confidence=USER_MAPPING_CONFIDENCE,
        source=RuleSource.USER,
        reason=f"User-defined mapping: {category}/{subcategory} → {tag}",
    )


def _special_rules(entries: List[Dict[str, Any]]) -> List[Rule]:
    rules = []
    for entry in entries:
        try:
            patterns = entry.get("patterns") or [entry["pattern"]]
            rules.append(Rule(
                id=str(entry["id"]),
                tier=0,
                type=RuleType.KEYWORD_MAPPING,
                conditions=[regex(patterns, Field(entry.get("field", Field.DESCRIPTION.value)))],
                result=RuleResult(
                    tag=entry["tag"],
                    category=entry.get("category"),
                    subcategory=entry.get("subcategory"),
                ),
                confidence=float(entry.get("confidence", 1.0)),
                reason=entry.get("reason", f"Special rule {entry['id']}"),
            ))
        except (KeyError, ValueError, TypeError, re.error) as e:
            logger.warning("Skipping invalid special rule %r: %s", entry, e)
    return rules


def _category_rules(entries: List[Dict[str, Any]]) -> List[Rule]:
    rules = []
    for entry in entries:
        try:
            rules.append(Rule(
                id=str(entry["id"]),
                tier=4,
                type=RuleType.CATEGORY_ASSIGNMENT,
                conditions=[regex([entry["pattern"]])],
                result=RuleResult(category=entry["category"], subcategory=entry["subcategory"]),
                confidence=float(entry.get("confidence", 0.8)),
                reason=f"Category inferred from description: {entry['category']}",
            ))
        except (KeyError, ValueError, TypeError, re.error) as e:
            logger.warning("Skipping invalid category rule %r: %s", entry, e)
    return rules
