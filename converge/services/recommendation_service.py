"""Recommendation engine - runs rules against a system profile."""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from converge.constants import MAX_RECOMMENDATIONS
from converge.errors import ConfigValidationError, ConvergeError, CriticalOperationError
from converge.items.aggregate import ConfigurationAggregate
from converge.items.factory import ItemFactory
from converge.models.recommendation import Priority, Recommendation
from converge.models.results import ApplyReport, ItemOutcome, ItemStatus
from converge.plugins.base import RecommendationRule

if TYPE_CHECKING:
    from converge.plugins.manager import PluginManager

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Development",
    "Productivity",
    "Security",
    "Performance",
    "Appearance",
    "Maintenance",
)

ENGINE_SOURCE = "engine"


class RecommendationEngine:
    """Generates recommendations from engine-local and plugin-supplied rules.

    A rule is a callable ``rule(profile)`` returning an iterable of
    ``Recommendation`` objects or dicts with the same fields (a single
    recommendation or None is also accepted).

    Args:
        plugin_manager: Source of rules from loaded recommendation plugins
        factory: Item factory used by ``apply_recommendations``
    """

    def __init__(
        self,
        plugin_manager: Optional["PluginManager"] = None,
        factory: Optional[ItemFactory] = None,
    ):
        self.plugin_manager = plugin_manager
        self.factory = factory or ItemFactory(plugin_manager)
        self._categories = list(DEFAULT_CATEGORIES)
        self._rules: Dict[str, Dict[str, RecommendationRule]] = {}

    @property
    def categories(self) -> List[str]:
        return list(self._categories)

    def available_categories(self) -> List[str]:
        """Engine categories plus categories used by loaded recommendation plugins."""
        categories = list(self._categories)
        if self.plugin_manager is not None:
            for _, category, _, _ in self.plugin_manager.iter_recommendation_rules():
                if category not in categories:
                    categories.append(category)
        return categories

    def register_category(self, name: str) -> None:
        if not name or not name.strip():
            raise ConfigValidationError("Category name cannot be empty")
        name = name.strip()
        if name not in self._categories:
            self._categories.append(name)
            logger.info(f"Registered recommendation category: {name}")

    def register_rule(self, category: str, name: str, rule: RecommendationRule) -> None:
        """Register an engine-local rule; unknown categories are added."""
        if not callable(rule):
            raise ConfigValidationError(f"Rule '{name}' is not callable")
        if not name or not name.strip():
            raise ConfigValidationError("Rule name cannot be empty")
        self.register_category(category)
        self._rules.setdefault(category.strip(), {})[name] = rule

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        profile: Dict[str, Any],
        category: Optional[str] = None,
        priority: Optional[str] = None,
        max_results: Optional[int] = None,
        include_conflicts: bool = False,
    ) -> List[Recommendation]:
        """Run every rule against ``profile``.

        Args:
            profile: System profile map (e.g. ``{"is_developer": True}``)
            category: Keep only recommendations of this category
            priority: Keep only recommendations of exactly this priority
            max_results: Cap on returned recommendations (1..MAX_RECOMMENDATIONS)
            include_conflicts: Keep every recommendation sharing a title
                instead of only the winner; duplicates get ``has_conflict``

        Returns:
            Recommendations sorted by priority then score, both descending

        Raises:
            ConfigValidationError: On an invalid filter, checked before any rule runs
        """
        category, wanted_priority = self._validate_filters(category, priority, max_results)
        profile = profile or {}

        raw: List[Recommendation] = []
        for source, rule_category, rule_name, rule in self._iter_rules():
            raw.extend(self._run_rule(source, rule_category, rule_name, rule, profile))
        logger.info(f"Rules produced {len(raw)} raw recommendation(s)")

        recommendations = _deduplicate(raw, include_conflicts)
        if category is not None:
            recommendations = [r for r in recommendations if r.category == category]
        if wanted_priority is not None:
            recommendations = [r for r in recommendations if r.priority == wanted_priority]

        recommendations.sort(key=lambda r: r.sort_key)
        if max_results is not None:
            recommendations = recommendations[:max_results]
        return recommendations

    def _validate_filters(
        self,
        category: Optional[str],
        priority: Optional[str],
        max_results: Optional[int],
    ) -> Tuple[Optional[str], Optional[Priority]]:
        if category is not None:
            allowed = self.available_categories()
            if category not in allowed:
                raise ConfigValidationError(
                    f"Invalid category '{category}'. Allowed: {', '.join(allowed)}"
                )
        wanted_priority = None
        if priority is not None:
            try:
                wanted_priority = Priority.parse(priority)
            except ValueError as e:
                raise ConfigValidationError(str(e)) from e
        if max_results is not None:
            if isinstance(max_results, bool) or not isinstance(max_results, int):
                raise ConfigValidationError(f"max_results must be an integer, got {max_results!r}")
            if not 1 <= max_results <= MAX_RECOMMENDATIONS:
                raise ConfigValidationError(
                    f"max_results must be between 1 and {MAX_RECOMMENDATIONS}, got {max_results}"
                )
        return category, wanted_priority

    def _iter_rules(self) -> Iterable[Tuple[str, str, str, RecommendationRule]]:
        for rule_category, rules in self._rules.items():
            for rule_name, rule in rules.items():
                yield ENGINE_SOURCE, rule_category, rule_name, rule
        if self.plugin_manager is not None:
            yield from self.plugin_manager.iter_recommendation_rules()

    def _run_rule(
        self,
        source: str,
        category: str,
        rule_name: str,
        rule: RecommendationRule,
        profile: Dict[str, Any],
    ) -> List[Recommendation]:
        try:
            output = rule(profile)
            if output is None:
                return []
            if isinstance(output, (Recommendation, dict)):
                output = [output]
            elif isinstance(output, (str, bytes)) or not hasattr(output, "__iter__"):
                logger.warning(
                    f"Recommendation rule {source}/{rule_name} returned {type(output).__name__}, ignoring it"
                )
                return []
            else:
                # Generators run here so their failures stay with this rule
                output = list(output)
        except Exception as e:
            logger.error(f"Recommendation rule {source}/{rule_name} failed: {e}")
            return []

        produced = []
        for entry in output:
            try:
                produced.append(_normalize(entry, source, category, rule_name))
            except (ValidationError, TypeError) as e:
                logger.warning(f"Discarding invalid recommendation from {source}/{rule_name}: {e}")
        return produced

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_recommendations(
        self,
        recommendations: Iterable[Recommendation],
        dry_run: bool = False,
        force: bool = False,
        include_manual: bool = False,
        parallel: bool = False,
    ) -> ApplyReport:
        """Turn recommendations into configuration items and apply them.

        Only recommendations carrying an item definition are applied, and only
        ``auto_apply`` ones unless ``include_manual``. A dry run tests the same
        set and reports ``WouldApply`` without changing anything. A definition
        the factory rejects is reported as ``Failed`` and the others still run.

        Raises:
            CriticalOperationError: Propagated from the aggregate
        """
        selected = [
            r for r in recommendations
            if r.item is not None and (r.auto_apply or include_manual)
        ]
        items = []
        rejected: List[ItemOutcome] = []
        for recommendation in selected:
            definition = dict(recommendation.item)
            definition.setdefault("name", recommendation.title)
            definition.setdefault("description", recommendation.description)
            try:
                items.append(self.factory.create(definition))
            except ConvergeError as e:
                logger.warning(f"Cannot create item for recommendation '{recommendation.title}': {e}")
                rejected.append(ItemOutcome(
                    name=str(definition.get("name") or recommendation.title),
                    type=str(definition.get("type") or ""),
                    status=ItemStatus.FAILED,
                    message="Item could not be created",
                    error=str(e),
                ))

        aggregate = ConfigurationAggregate(
            "recommendations",
            items,
            metadata={"source": "recommendation-engine", "count": len(items)},
        )
        logger.info(f"Applying {len(items)} recommendation(s) (dry_run={dry_run})")
        try:
            report = aggregate.apply_all(force=force, parallel=parallel, dry_run=dry_run)
        except CriticalOperationError as e:
            if e.report is not None:
                for outcome in rejected:
                    e.report.record(outcome)
            raise
        for outcome in rejected:
            report.record(outcome)
        return report


def _normalize(entry: Any, source: str, category: str, rule_name: str) -> Recommendation:
    if isinstance(entry, Recommendation):
        updates = {}
        if not entry.source:
            updates["source"] = source
        if not entry.rule:
            updates["rule"] = rule_name
        return entry.model_copy(update=updates) if updates else entry
    if not isinstance(entry, dict):
        raise TypeError(f"Unsupported rule output: {type(entry).__name__}")
    data = dict(entry)
    data.setdefault("category", category)
    data.setdefault("source", source)
    data.setdefault("rule", rule_name)
    return Recommendation(**data)


def _deduplicate(recommendations: List[Recommendation], include_conflicts: bool) -> List[Recommendation]:
    """Collapse recommendations sharing a title.

    The winner is the highest priority, then highest score, then the first
    seen. With ``include_conflicts`` every variant is kept and flagged.
    """
    groups: Dict[str, List[Recommendation]] = {}
    for recommendation in recommendations:
        groups.setdefault(recommendation.title, []).append(recommendation)

    result = []
    for title, group in groups.items():
        if len(group) == 1:
            result.append(group[0])
            continue
        logger.debug(f"{len(group)} recommendations share the title '{title}'")
        if include_conflicts:
            result.extend(r.model_copy(update={"has_conflict": True}) for r in group)
        else:
            # min() keeps the first of equal keys
            result.append(min(group, key=lambda r: r.sort_key))
    return result
