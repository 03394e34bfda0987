"""Product retrieval engine.

Every public search is read-only and bounded by a limit. Strategies are chained
as ordered (name, executor) tiers evaluated by first_non_empty: the first tier
returning products wins, a tier that raises is logged and treated as empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .catalog import CatalogStore, Product, species_matches
from .intents import (
    STRATEGY_CATEGORIES_FIRST,
    STRATEGY_CATEGORY_THEN_NAME,
    STRATEGY_NAME_WITH_SYNONYMS,
    CategoryFilter,
    IntentResult,
    get_normalized_category_names,
)
from .utils import significant_words

logger = logging.getLogger("mia.retrieval")

DEFAULT_LIMIT = 5
ALTERNATIVES_LIMIT = 3
ALTERNATIVES_CATEGORY_LIMIT = 2
SPECIES_LIMIT = 10

TIER_CATEGORIES = "categories"
TIER_NAME_SYNONYMS = "name_synonyms"
TIER_FULL_TEXT = "full_text"
TIER_ALTERNATIVES = "alternatives"
TIER_BROAD_CATEGORY = "broad_category"
TIER_SPECIES = "species"
TIER_NONE = "none"

Executor = Callable[[], List[Product]]


@dataclass
class Tier:
    """One retrieval strategy in a fallback chain."""
    name: str
    run: Executor
    is_alternative: bool = False


@dataclass
class RetrievalResult:
    """Products chosen for the generator plus which tier produced them."""
    products: List[Product] = field(default_factory=list)
    strategy: str = TIER_NONE
    is_alternative: bool = False
    attempted: List[str] = field(default_factory=list)


def first_non_empty(tiers: Sequence[Tier]) -> RetrievalResult:
    """Purpose: Evaluate tiers in order and stop at the first non-empty result.
    Inputs/Outputs: Input is an ordered tier list; output is a RetrievalResult
        (strategy "none" when every tier came back empty).
    Side Effects / State: Logs tier failures at WARNING.
    Dependencies: None beyond the tier callables.
    Failure Modes: Never raises; a failing tier counts as empty.
    If Removed: Fallback chains go back to nested conditionals.
    Testing Notes: attempted lists every tier that ran, so tests can assert the
        broad and species tiers were tried before an empty result.
    """
    # Run each tier once; first products win.
    attempted: List[str] = []
    for tier in tiers:
        attempted.append(tier.name)
        try:
            products = tier.run()
        except Exception as exc:
            logger.warning("retrieval tier failed tier=%s error=%s", tier.name, exc)
            continue
        if products:
            return RetrievalResult(
                products=list(products),
                strategy=tier.name,
                is_alternative=tier.is_alternative,
                attempted=attempted,
            )
    return RetrievalResult(attempted=attempted)


class ProductRetriever:
    """Search strategies over a CatalogStore."""

    def __init__(self, catalog: CatalogStore, default_limit: int = DEFAULT_LIMIT) -> None:
        self._catalog = catalog
        self._default_limit = default_limit

    @property
    def catalog(self) -> CatalogStore:
        return self._catalog

    def _resolve_limit(self, limit: Optional[int]) -> int:
        # None means the configured default; an explicit 0 returns nothing.
        return self._default_limit if limit is None else max(limit, 0)

    def search_products(
        self,
        search_terms: str,
        species: Optional[str] = None,
        category: Optional[str] = None,
        max_price: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Product]:
        """Purpose: Generic full-text / trigram search with a LIKE fallback.
        Inputs/Outputs: Inputs are query text and optional filters; output is
            ranked products.
        Side Effects / State: Logs when the fallback search is used.
        Dependencies: CatalogStore.find_by_filters and fallback_search.
        Failure Modes: Ranked search errors are logged and replaced by the
            fallback search; zero rows also use the fallback.
        If Removed: Messages without an intent get no grounding at all.
        Testing Notes: A query with only stopwords still reaches fallback_search.
        """
        # Ranked search first; substring search when it errors or finds nothing.
        limit = self._resolve_limit(limit)
        if not search_terms or not search_terms.strip():
            return []
        try:
            products = self._catalog.find_by_filters(
                search_terms, species=species, category=category, max_price=max_price, limit=limit
            )
        except Exception as exc:
            logger.error("product search error terms=%s error=%s", search_terms, exc)
            return self.fallback_search(search_terms, limit)
        if not products:
            logger.debug("ranked search empty, using fallback terms=%s", search_terms)
            return self.fallback_search(search_terms, limit)
        return products

    def fallback_search(self, search_terms: str, limit: Optional[int] = None) -> List[Product]:
        """Substring match on the whole query plus per-word matches (len > 2)."""
        limit = self._resolve_limit(limit)
        whole = (search_terms or "").strip().lower()
        if not whole:
            return []
        words = significant_words(whole)

        def matches(product: Product) -> bool:
            wide = [product.name, product.category, product.description, product.indications, product.species]
            if any(whole in (value or "").lower() for value in wide):
                return True
            narrow = [product.name, product.category, product.indications]
            return any(word in (value or "").lower() for word in words for value in narrow)

        return self._catalog.query(matches, limit)

    def search_products_by_categories(
        self,
        category_names: Sequence[str],
        species: Optional[str] = None,
        limit: Optional[int] = None,
        category_filters: Optional[Dict[str, CategoryFilter]] = None,
    ) -> List[Product]:
        """Purpose: Products in any of the given categories, most specific first.
        Inputs/Outputs: Inputs are category names, optional species, limit and
            per-category name filters; output is ranked products.
        Side Effects / State: Errors are logged.
        Dependencies: CatalogStore.find_by_category_names.
        Failure Modes: Store errors return an empty list.
        If Removed: categories_first intents lose their primary tier.
        Testing Notes: CONDROPROTECTOR/ARTICULAR subcategory ranks above SALUD.
        """
        # Delegate ranking and scoped filters to the catalog store.
        limit = self._resolve_limit(limit)
        if not category_names:
            return []
        try:
            return self._catalog.find_by_category_names(
                category_names, species=species, category_filters=category_filters, limit=limit
            )
        except Exception as exc:
            logger.error("category search error categories=%s error=%s", list(category_names), exc)
            return []

    def search_products_by_name_synonyms(
        self,
        terms: Sequence[str],
        species: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Product]:
        """Any term as a substring of name/description/indications/category/subcategory."""
        limit = self._resolve_limit(limit)
        lowered = [term.lower().strip() for term in terms if term and term.strip()]
        if not lowered:
            return []

        def matches(product: Product) -> bool:
            fields = [
                product.name,
                product.description,
                product.indications,
                product.category,
                product.subcategory,
            ]
            return any(term in (value or "").lower() for term in lowered for value in fields)

        return self._catalog.query(matches, limit, species=species)

    def broad_category_search(self, search_terms: str, limit: Optional[int] = None) -> List[Product]:
        """Significant words (len > 2) against category, subcategory and species."""
        limit = self._resolve_limit(limit)
        words = significant_words(search_terms)
        if not words:
            return []

        def matches(product: Product) -> bool:
            fields = [product.category, product.subcategory, product.species]
            return any(word in (value or "").lower() for word in words for value in fields)

        return self._catalog.query(matches, limit)

    def find_alternative_products(
        self,
        original_query: str,
        related_categories: Sequence[str],
        species: Optional[str] = None,
        limit: int = ALTERNATIVES_LIMIT,
    ) -> List[Product]:
        """Purpose: Near-miss products for an intent with no exact match.
        Inputs/Outputs: Inputs are the query, related category names, species and
            a cap; output is at most `limit` deduplicated products.
        Side Effects / State: None beyond logging in the called searches.
        Dependencies: search_products_by_categories and broad_category_search.
        Failure Modes: Empty list when neither source matches.
        If Removed: Intent queries with no exact match jump straight to broad search.
        Testing Notes: Category alternatives come first and are capped at two.
        """
        # Related categories without name filters, then broad search, no duplicates.
        alternatives: List[Product] = []
        if related_categories:
            alternatives.extend(
                self.search_products_by_categories(
                    related_categories, species=species, limit=min(ALTERNATIVES_CATEGORY_LIMIT, limit)
                )
            )
        if len(alternatives) < limit and original_query:
            seen = {str(product.id) for product in alternatives}
            for product in self.broad_category_search(original_query, limit - len(alternatives)):
                if str(product.id) in seen:
                    continue
                alternatives.append(product)
                seen.add(str(product.id))
                if len(alternatives) >= limit:
                    break
        return alternatives[:limit]

    def get_products_by_species(self, species: str, limit: int = SPECIES_LIMIT) -> List[Product]:
        if not species:
            return []
        return self._catalog.query(lambda product: species_matches(product, species), limit)

    def get_products_by_category(self, category: str, limit: int = SPECIES_LIMIT) -> List[Product]:
        needle = (category or "").lower()
        if not needle:
            return []
        return self._catalog.query(lambda product: needle in product.category.lower(), limit)

    def intent_tiers(
        self,
        search_terms: str,
        intent: IntentResult,
        species: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Tier]:
        """Purpose: Build the ordered tier list for an intent-driven search.
        Inputs/Outputs: Inputs are query terms, IntentResult, species and limit;
            output is the tier list consumed by first_non_empty.
        Side Effects / State: None; executors are lazy.
        Dependencies: get_normalized_category_names and the search methods above.
        Failure Modes: None at build time.
        If Removed: search_products_with_intent cannot express its cascade.
        Testing Notes: A categories_first intent without candidates starts at the
            name_synonyms tier.
        """
        # Tier order: categories, synonyms, generic, then flagged fallbacks.
        limit = self._resolve_limit(limit)
        categories = get_normalized_category_names(intent.category_candidates)
        tiers: List[Tier] = []
        if categories and intent.uses_strategy(STRATEGY_CATEGORIES_FIRST, STRATEGY_CATEGORY_THEN_NAME):
            tiers.append(
                Tier(
                    TIER_CATEGORIES,
                    lambda: self.search_products_by_categories(
                        categories, species=species, limit=limit, category_filters=intent.category_filters
                    ),
                )
            )
        if intent.uses_strategy(STRATEGY_NAME_WITH_SYNONYMS, STRATEGY_CATEGORY_THEN_NAME):
            terms = [search_terms] + list(intent.name_synonyms)
            tiers.append(
                Tier(TIER_NAME_SYNONYMS, lambda: self.search_products_by_name_synonyms(terms, species=species, limit=limit))
            )
        tiers.append(
            Tier(TIER_FULL_TEXT, lambda: self.search_products(search_terms, species=species, limit=limit))
        )
        tiers.append(
            Tier(
                TIER_ALTERNATIVES,
                lambda: self.find_alternative_products(
                    search_terms, categories, species=species, limit=min(ALTERNATIVES_LIMIT, limit)
                ),
                is_alternative=True,
            )
        )
        tiers.extend(self._fallback_tiers(search_terms, species, limit))
        return tiers

    def generic_tiers(self, search_terms: str, species: Optional[str] = None, limit: Optional[int] = None) -> List[Tier]:
        limit = self._resolve_limit(limit)
        tiers = [Tier(TIER_FULL_TEXT, lambda: self.search_products(search_terms, species=species, limit=limit))]
        tiers.extend(self._fallback_tiers(search_terms, species, limit))
        return tiers

    def search_products_with_intent(
        self,
        search_terms: str,
        intent: Optional[IntentResult],
        species: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> RetrievalResult:
        """Purpose: Resolve products for a message through the full strategy cascade.
        Inputs/Outputs: Inputs are query terms, optional IntentResult, species and
            limit; output is a RetrievalResult.
        Side Effects / State: Logs the chosen tier and product ids at INFO.
        Dependencies: intent_tiers / generic_tiers and first_non_empty.
        Failure Modes: Never raises; tier errors degrade to the next tier.
        If Removed: The pipeline has no grounded products for the generator.
        Testing Notes: Empty results only after every tier ran (see attempted).
        """
        # Support and unmatched messages take the generic chain.
        if intent is None or intent.intent is None or intent.is_support:
            tiers = self.generic_tiers(search_terms, species, limit)
        else:
            tiers = self.intent_tiers(search_terms, intent, species, limit)
        result = first_non_empty(tiers)
        logger.info(
            "product search intent=%s query=%s strategy=%s results=%s top_ids=%s alternative=%s species=%s",
            intent.intent if intent else None,
            search_terms,
            result.strategy,
            len(result.products),
            [product.id for product in result.products],
            result.is_alternative,
            species or "none",
        )
        return result

    def _fallback_tiers(self, search_terms: str, species: Optional[str], limit: int) -> List[Tier]:
        tiers = [
            Tier(TIER_BROAD_CATEGORY, lambda: self.broad_category_search(search_terms, limit), is_alternative=True)
        ]
        if species:
            tiers.append(
                Tier(TIER_SPECIES, lambda: self.get_products_by_species(species, limit), is_alternative=True)
            )
        return tiers

