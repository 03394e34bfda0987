"""Catalog store over the exported product file.

The import job (outside this package) writes a JSON export of the shop catalog.
This module loads it into Product objects and offers the read-only queries the
retrieval engine needs: full-text/trigram search, category search and the
active name list used by response validation.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .intents import CategoryFilter
from .similarity import (
    CATEGORY_TRIGRAM_THRESHOLD,
    DESCRIPTION_TRIGRAM_THRESHOLD,
    NAME_TRIGRAM_THRESHOLD,
    trigram_similarity,
)
from .utils import normalize_key, normalize_text, strip_accents_upper

logger = logging.getLogger("mia.catalog")

ID_KEYS = ["id", "id_product", "product id"]
SKU_KEYS = ["sku", "ean", "ean13", "barcode", "codigo de barras", "referencia", "reference"]
NAME_KEYS = ["name", "nombre", "product name", "nombre producto"]
BRAND_KEYS = ["brand", "marca", "fabricante"]
CATEGORY_KEYS = ["category", "categoria", "product category"]
SUBCATEGORY_KEYS = ["subcategory", "subcategoria"]
SPECIES_KEYS = ["species", "especie", "especies"]
DESC_KEYS = ["description", "descripcion", "short description", "descripcion corta"]
INDICATIONS_KEYS = ["indications", "indicaciones"]
INGREDIENTS_KEYS = ["active ingredients", "active_ingredients", "principios activos", "principio activo"]
PRICE_KEYS = ["price", "precio", "pvp"]
URL_KEYS = ["product url", "product_url", "url", "link", "enlace"]
CART_URL_KEYS = ["add to cart url", "add_to_cart_url", "cart url"]
IMAGE_KEYS = ["image url", "image_url", "imagen", "image"]
RX_KEYS = ["requires prescription", "requires_prescription", "receta", "prescription"]
ACTIVE_KEYS = ["is active", "is_active", "active", "activo"]

# Subcategory markers treated as specific (ranked ahead of parent categories).
SPECIFIC_CATEGORY_MARKERS = ["/", "ARTICULAR", "RENAL", "GASTROINTESTINAL", "BUCODENTAL", "OTICO"]

SPANISH_STOPWORDS = {
    "a", "al", "algo", "con", "de", "del", "e", "el", "ella", "en", "es", "esta", "este",
    "la", "las", "le", "les", "lo", "los", "me", "mi", "mis", "o", "para", "pero", "por",
    "que", "se", "si", "sin", "su", "sus", "te", "tiene", "tienes", "tu", "un", "una",
    "uno", "unos", "unas", "y", "ya", "hay", "como", "mas", "muy", "quiero", "busco",
    "necesito", "hola", "algun", "alguna",
}

_TRUE_VALUES = {"1", "true", "si", "yes", "y", "t", "x"}


@dataclass
class Product:
    """Normalized view of a catalog record."""
    id: Any
    name: str
    brand: str = ""
    category: str = ""
    subcategory: str = ""
    species: str = ""
    description: str = ""
    indications: str = ""
    active_ingredients: str = ""
    price: Optional[float] = None
    product_url: str = ""
    add_to_cart_url: str = ""
    image_url: str = ""
    requires_prescription: bool = False
    is_active: bool = True
    sku: str = ""


@dataclass
class CatalogEntry:
    """Minimal name/url view used by response validation."""
    id: Any
    name: str
    product_url: str = ""


@dataclass
class CatalogMeta:
    """Metadata describing the loaded catalog file for logging."""
    file_name: str
    updated_at: str
    sha256: str
    product_count: int


class CatalogStore:
    """In-memory, read-only product catalog loaded from a JSON export."""

    def __init__(self, products: Optional[Iterable[Product]] = None, path: Optional[Path] = None) -> None:
        """Purpose: Build a store from products or from a JSON file path.
        Inputs/Outputs: Inputs are optional products and/or a path; no return value.
        Side Effects / State: Loads the file immediately when a path is given.
        Dependencies: load_catalog_file for file input.
        Failure Modes: File errors propagate at construction time.
        If Removed: Retrieval and validation have no catalog to read.
        Testing Notes: Tests construct stores directly from Product lists.
        """
        # Prefer the file when given; otherwise keep the supplied products.
        self._path = path
        self.meta: Optional[CatalogMeta] = None
        self._products: List[Product] = list(products or [])
        if path is not None:
            self.reload()

    def reload(self) -> None:
        """Re-read the JSON export (no-op for stores built from product lists)."""
        if self._path is None:
            return
        self._products, self.meta = load_catalog_file(self._path)
        logger.info(
            "catalog loaded file=%s products=%s sha256=%s",
            self.meta.file_name,
            self.meta.product_count,
            self.meta.sha256[:12],
        )

    def active_products(self) -> List[Product]:
        return [product for product in self._products if product.is_active and product.name]

    def count_active(self) -> int:
        return len(self.active_products())

    def get_by_id(self, product_id: Any) -> Optional[Product]:
        for product in self.active_products():
            if str(product.id) == str(product_id):
                return product
        return None

    def query(
        self,
        predicate: Callable[[Product], bool],
        limit: int,
        species: Optional[str] = None,
    ) -> List[Product]:
        """Purpose: Filter active products by predicate, ordered by name.
        Inputs/Outputs: Inputs are a predicate, result limit and optional species
            substring filter; output is at most `limit` products.
        Side Effects / State: None.
        Dependencies: species_matches.
        Failure Modes: Predicate exceptions propagate to the retrieval tier, which
            logs them and moves on to the next strategy.
        If Removed: Retrieval strategies would each re-implement filtering.
        Testing Notes: Results are sorted by name ascending.
        """
        # Filter, order alphabetically and cap.
        matches = [
            product
            for product in self.active_products()
            if species_matches(product, species) and predicate(product)
        ]
        matches.sort(key=lambda product: product.name.lower())
        return matches[: max(limit, 0)]

    def find_by_filters(
        self,
        text: str,
        species: Optional[str] = None,
        category: Optional[str] = None,
        max_price: Optional[float] = None,
        limit: int = 5,
    ) -> List[Product]:
        """Purpose: Full-text plus trigram search with optional filters.
        Inputs/Outputs: Inputs are query text, optional species/category/max_price
            filters and a limit; output is relevance-ranked products.
        Side Effects / State: None.
        Dependencies: text_search_rank, trigram_similarity and the loose thresholds
            in similarity.
        Failure Modes: Empty query returns an empty list.
        If Removed: The generic search tier has no ranked query.
        Testing Notes: A misspelt name ("royal canin mni") still matches by trigram.
        """
        # A product qualifies by full-text match or by any trigram threshold.
        if not text or not text.strip():
            return []
        lexemes = query_lexemes(text)
        scored: List[Tuple[float, float, str, Product]] = []
        for product in self.active_products():
            if not species_matches(product, species):
                continue
            if category and category.lower() not in product.category.lower():
                continue
            if max_price is not None and (product.price is None or product.price > max_price):
                continue
            relevance = text_search_rank(lexemes, product)
            name_similarity = trigram_similarity(product.name, text)
            qualifies = (
                relevance > 0
                or name_similarity > NAME_TRIGRAM_THRESHOLD
                or trigram_similarity(product.category, text) > CATEGORY_TRIGRAM_THRESHOLD
                or trigram_similarity(product.description, text) > DESCRIPTION_TRIGRAM_THRESHOLD
            )
            if qualifies:
                scored.append((relevance, name_similarity, product.name.lower(), product))
        scored.sort(key=lambda row: (-row[0], -row[1], row[2]))
        return [row[3] for row in scored[: max(limit, 0)]]

    def find_by_category_names(
        self,
        category_names: Sequence[str],
        species: Optional[str] = None,
        category_filters: Optional[Dict[str, CategoryFilter]] = None,
        limit: int = 5,
    ) -> List[Product]:
        """Purpose: Products whose category or subcategory contains any candidate name.
        Inputs/Outputs: Inputs are candidate names, optional species, per-category
            name filters and a limit; output is ranked products.
        Side Effects / State: None.
        Dependencies: strip_accents_upper, is_specific_category, name filters.
        Failure Modes: Empty candidate list returns an empty list.
        If Removed: Intent-driven category search has nothing to call.
        Testing Notes: A "CONDROPROTECTOR/ARTICULAR" subcategory product ranks above
            a product that only matches "SALUD"; name filters only apply to products
            inside the filter's category.
        """
        # Match accent-free on both sides; rank most specific matches first.
        names = [strip_accents_upper(name) for name in category_names if name and name.strip()]
        if not names:
            return []
        specific = [name for name in names if is_specific_category(name)]
        active_filters = _active_filters(names, category_filters or {})

        ranked: List[Tuple[int, str, Product]] = []
        for product in self.active_products():
            if not species_matches(product, species):
                continue
            category = strip_accents_upper(product.category)
            subcategory = strip_accents_upper(product.subcategory)
            if not any(name in category or name in subcategory for name in names):
                continue
            if not _passes_name_filters(product, category, subcategory, active_filters):
                continue
            ranked.append((_specificity_rank(category, subcategory, specific), product.name.lower(), product))
        ranked.sort(key=lambda row: (row[0], row[1]))
        return [row[2] for row in ranked[: max(limit, 0)]]

    def list_all_active_names(self) -> List[CatalogEntry]:
        """Return id/name/url of every active product, ordered by name."""
        entries = [
            CatalogEntry(id=product.id, name=product.name, product_url=product.product_url)
            for product in self.active_products()
        ]
        entries.sort(key=lambda entry: entry.name)
        return entries


def species_matches(product: Product, species: Optional[str]) -> bool:
    """Species is a free-text field; the filter is a case-insensitive substring."""
    if not species:
        return True
    return species.lower() in (product.species or "").lower()


def is_specific_category(name: str) -> bool:
    upper = strip_accents_upper(name)
    return any(marker in upper for marker in SPECIFIC_CATEGORY_MARKERS)


def _specificity_rank(category: str, subcategory: str, specific: List[str]) -> int:
    # 0: subcategory holds a specific candidate, 1: category does, 2: parent-only match.
    if any(name in subcategory for name in specific):
        return 0
    if any(name in category for name in specific):
        return 1
    return 2


def _active_filters(
    names: List[str], category_filters: Dict[str, CategoryFilter]
) -> List[Tuple[str, List[List[str]]]]:
    # Keep filters whose key overlaps a searched category (substring either way).
    # Each non-empty term list (must, should) is a separate AND condition.
    active: List[Tuple[str, List[List[str]]]] = []
    for key, category_filter in category_filters.items():
        normalized_key = strip_accents_upper(key)
        if not any(normalized_key in name or name in normalized_key for name in names):
            continue
        term_lists = [
            [term.lower() for term in terms]
            for terms in (category_filter.must_match_name_any, category_filter.should_match_name_any)
            if terms
        ]
        if term_lists:
            active.append((normalized_key, term_lists))
    return active


def _passes_name_filters(
    product: Product, category: str, subcategory: str, active_filters: List[Tuple[str, List[List[str]]]]
) -> bool:
    name = product.name.lower()
    for key, term_lists in active_filters:
        if key in category or key in subcategory:
            if not all(any(term in name for term in terms) for terms in term_lists):
                return False
    return True


def stem(token: str) -> str:
    """Light Spanish plural stemmer shared by query and document lexemes."""
    if len(token) > 5 and token.endswith("es"):
        return token[:-2]
    if len(token) > 3 and token.endswith("s"):
        return token[:-1]
    return token


def query_lexemes(text: str) -> List[str]:
    """Stemmed, stopword-free lexemes of a query (plainto_tsquery style)."""
    lexemes: List[str] = []
    for token in normalize_text(text).split():
        if token in SPANISH_STOPWORDS or len(token) < 2:
            continue
        lexeme = stem(token)
        if lexeme not in lexemes:
            lexemes.append(lexeme)
    return lexemes


def _document_lexemes(product: Product) -> Tuple[Dict[str, int], int]:
    counts: Dict[str, int] = {}
    fields = [
        (product.name, 2),
        (product.brand, 1),
        (product.category, 1),
        (product.subcategory, 1),
        (product.species, 1),
        (product.description, 1),
        (product.indications, 1),
        (product.active_ingredients, 1),
    ]
    total = 0
    for value, weight in fields:
        for token in normalize_text(value).split():
            lexeme = stem(token)
            counts[lexeme] = counts.get(lexeme, 0) + weight
            total += 1
    return counts, total


def text_search_rank(lexemes: List[str], product: Product) -> float:
    """Purpose: Rank a product for a query the way a text-search index would.
    Inputs/Outputs: Inputs are query lexemes and a product; output is 0 when any
        lexeme is missing, otherwise a positive frequency-based score.
    Side Effects / State: None.
    Dependencies: stem and normalize_text via _document_lexemes.
    Failure Modes: Empty lexeme list scores 0.
    If Removed: find_by_filters only has trigram similarity to rank with.
    Testing Notes: Name hits weigh double compared to description hits.
    """
    # All lexemes must occur; score is weighted frequency damped by length.
    if not lexemes:
        return 0.0
    counts, total = _document_lexemes(product)
    if not total or any(lexeme not in counts for lexeme in lexemes):
        return 0.0
    hits = sum(counts[lexeme] for lexeme in lexemes)
    return hits / (1.0 + math.log(total))


def load_catalog_file(path: Path) -> Tuple[List[Product], CatalogMeta]:
    """Purpose: Load and normalize products from a catalog JSON export.
    Inputs/Outputs: Input is a Path; returns Product list and CatalogMeta.
    Side Effects / State: Reads the file and computes hash/mtime.
    Dependencies: json, hashlib, _get_first_value.
    Failure Modes: JSON decode errors raise to the caller.
    If Removed: The catalog cannot be read from disk.
    Testing Notes: Spanish and English field names both load.
    """
    # Hash raw bytes for logging, then map each record via key synonyms.
    raw_bytes = path.read_bytes()
    sha256 = hashlib.sha256(raw_bytes).hexdigest()
    updated_at = datetime.fromtimestamp(path.stat().st_mtime).isoformat()

    data = json.loads(raw_bytes.decode("utf-8-sig"))
    if isinstance(data, dict):
        records = data.get("products", [])
    elif isinstance(data, list):
        records = data
    else:
        records = []

    products = [product_from_record(record, index) for index, record in enumerate(records, start=1) if isinstance(record, dict)]
    meta = CatalogMeta(
        file_name=path.name,
        updated_at=updated_at,
        sha256=sha256,
        product_count=len(products),
    )
    return products, meta


def product_from_record(record: Dict[str, Any], fallback_id: Any = None) -> Product:
    """Map one raw record (English or Spanish keys) onto a Product."""
    product_id = _get_first_value(record, ID_KEYS)
    return Product(
        id=product_id if product_id is not None else fallback_id,
        sku=_text(_get_first_value(record, SKU_KEYS)),
        name=_text(_get_first_value(record, NAME_KEYS)),
        brand=_text(_get_first_value(record, BRAND_KEYS)),
        category=_text(_get_first_value(record, CATEGORY_KEYS)),
        subcategory=_text(_get_first_value(record, SUBCATEGORY_KEYS)),
        species=_text(_get_first_value(record, SPECIES_KEYS)),
        description=_text(_get_first_value(record, DESC_KEYS)),
        indications=_text(_get_first_value(record, INDICATIONS_KEYS)),
        active_ingredients=_text(_get_first_value(record, INGREDIENTS_KEYS)),
        price=_parse_price(_get_first_value(record, PRICE_KEYS)),
        product_url=_text(_get_first_value(record, URL_KEYS)),
        add_to_cart_url=_text(_get_first_value(record, CART_URL_KEYS)),
        image_url=_text(_get_first_value(record, IMAGE_KEYS)),
        requires_prescription=_parse_bool(_get_first_value(record, RX_KEYS), default=False),
        is_active=_parse_bool(_get_first_value(record, ACTIVE_KEYS), default=True),
    )


def _get_first_value(item: Dict[str, Any], keys: List[str]) -> Optional[Any]:
    """Purpose: Find the first populated field in a dict by key synonyms.
    Inputs/Outputs: Input is a raw dict and candidate keys; returns value or None.
    Side Effects / State: None.
    Dependencies: Uses normalize_key and _has_value.
    Failure Modes: Returns None when no keys match or values are empty.
    If Removed: Field mapping for exports with Spanish headers fails.
    Testing Notes: "Nombre" and "name" both resolve to the product name.
    """
    # Exact normalized key match only; partial matches would confuse url/cart url.
    normalized_map = {normalize_key(str(k)): k for k in item.keys()}
    for key in keys:
        normalized = normalize_key(key)
        if normalized in normalized_map:
            value = item.get(normalized_map[normalized])
            if _has_value(value):
                return value
    return None


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(part).strip() for part in value if str(part).strip())
    return str(value).strip()


def _parse_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^\d,.\-]", "", str(value))
    if "," in cleaned and "." not in cleaned:
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        return None


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return normalize_text(str(value)) in _TRUE_VALUES
