"""Post-generation validation of product names and product-card selection.

The generator is only allowed to surface names that exist in the live catalog.
Mentions are extracted by three independent passes (markdown links, bold spans,
numbered-list items), matched exactly or fuzzily against every active product,
and either rewritten to the canonical name or stripped as hallucinations.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .catalog import CatalogEntry, Product
from .similarity import SIMILARITY_THRESHOLD, name_similarity

logger = logging.getLogger("mia.validator")

MIN_MENTION_LENGTH = 4
CARD_WORD_MIN_LENGTH = 4
CARD_WORD_RATIO = 0.6
CARD_MIN_WORDS = 2
CLARIFYING_CARD_LIMIT = 3

LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
NUMBERED_RE = re.compile(r"^[ \t]*\d+\.[ \t]+([^-\u2013\u2014:\n]+?)(?:\s*[-\u2013\u2014:]|$)", re.MULTILINE)
BLANK_RUN_RE = re.compile(r"\n{3,}")

QUESTION_MARK_RE = re.compile(r"[¿?]")
QUESTION_WORD_RE = re.compile(
    r"\b(es|tiene|quiere|busca|necesita|dime|cuéntame|puedes|me puedes|cuál|qué|cuánto|cuánta)\b",
    re.IGNORECASE,
)


@dataclass
class MentionResolution:
    """How one extracted mention was resolved."""
    mention: str
    canonical: Optional[str] = None
    score: float = 0.0

    @property
    def is_hallucination(self) -> bool:
        return self.canonical is None


@dataclass
class ValidationReport:
    """Validated text plus the audit trail of corrections and strips."""
    text: str
    corrected: List[MentionResolution] = field(default_factory=list)
    stripped: List[str] = field(default_factory=list)


def _keep(mention: str) -> bool:
    return len(mention) >= MIN_MENTION_LENGTH


def extract_link_mentions(text: str) -> List[str]:
    return [match.group(1).strip() for match in LINK_RE.finditer(text or "") if _keep(match.group(1).strip())]


def extract_bold_mentions(text: str) -> List[str]:
    return [match.group(1).strip() for match in BOLD_RE.finditer(text or "") if _keep(match.group(1).strip())]


def extract_numbered_mentions(text: str) -> List[str]:
    """Leading text of numbered items; items opening with bold or a link belong to those passes."""
    mentions: List[str] = []
    for match in NUMBERED_RE.finditer(text or ""):
        candidate = match.group(1).strip()
        if candidate.startswith(("**", "[")):
            continue
        if _keep(candidate):
            mentions.append(candidate)
    return mentions


def extract_mentions(text: str) -> List[str]:
    """Purpose: Collect candidate product mentions from generator output.
    Inputs/Outputs: Input is response text; output is an ordered, deduplicated list.
    Side Effects / State: None.
    Dependencies: The three extract_* passes.
    Failure Modes: None; mentions of 3 characters or fewer are ignored.
    If Removed: Validation has nothing to check.
    Testing Notes: A name that is both linked and bold appears once.
    """
    # Links first, then bold, then numbered items.
    seen: List[str] = []
    for mention in extract_link_mentions(text) + extract_bold_mentions(text) + extract_numbered_mentions(text):
        if mention not in seen:
            seen.append(mention)
    return seen


def resolve_mention(mention: str, names_by_lower: Dict[str, str]) -> MentionResolution:
    """Purpose: Match one mention against the catalog, exactly then fuzzily.
    Inputs/Outputs: Inputs are the mention and a lowercase->canonical name map;
        output is a MentionResolution (canonical None for hallucinations).
    Side Effects / State: None.
    Dependencies: name_similarity and SIMILARITY_THRESHOLD.
    Failure Modes: Ties keep the first catalog name in map order.
    If Removed: Near-miss names are stripped instead of corrected.
    Testing Notes: "Advance adult chicken rice" resolves to
        "Advance Mini Adult Chicken & Rice" with score 0.8.
    """
    # Exact case-insensitive hit wins outright.
    lowered = mention.lower()
    exact = names_by_lower.get(lowered)
    if exact is not None:
        return MentionResolution(mention=mention, canonical=exact, score=1.0)

    best_name: Optional[str] = None
    best_score = 0.0
    for name_lower, name in names_by_lower.items():
        score = name_similarity(lowered, name_lower)
        if score > best_score and score > SIMILARITY_THRESHOLD:
            best_name = name
            best_score = score
    return MentionResolution(mention=mention, canonical=best_name, score=best_score)


def _replace_mention(text: str, mention: str, canonical: str) -> str:
    # Skip spots where the canonical name is already present (mention is its prefix).
    pieces: List[str] = []
    cursor = 0
    for match in re.finditer(re.escape(mention), text):
        start = match.start()
        if text.startswith(canonical, start):
            continue
        pieces.append(text[cursor:start])
        pieces.append(canonical)
        cursor = match.end()
    pieces.append(text[cursor:])
    return "".join(pieces)


def _protected_spans(text: str, names_lower: Sequence[str]) -> List[Tuple[int, int]]:
    lowered = text.lower()
    spans: List[Tuple[int, int]] = []
    for name in names_lower:
        start = lowered.find(name)
        while start != -1:
            spans.append((start, start + len(name)))
            start = lowered.find(name, start + 1)
    return spans


def _strip_hallucination(text: str, mention: str, names_lower: Sequence[str] = ()) -> str:
    """Purpose: Remove every trace of a product name that is not in the catalog.
    Inputs/Outputs: Inputs are the text, the unmatched mention and the lowercase
        catalog names; output is the text without the mention.
    Side Effects / State: None.
    Dependencies: _protected_spans.
    Failure Modes: None; occurrences inside a real catalog name are kept.
    If Removed: Invented products reach customers.
    Testing Notes: A bold mention inside ordinary prose is removed with its
        surrounding asterisks.
    """
    # Numbered items headed by the mention (plain, bold or linked), then links.
    item_re = re.compile(
        r"^[ \t]*\d+\.[ \t]*(?:\*\*|\[)?" + re.escape(mention) + r"[^\n]*$",
        re.IGNORECASE | re.MULTILINE,
    )
    text = item_re.sub("", text)
    text = re.sub(r"\[" + re.escape(mention) + r"\]\([^)]+\)", "", text, flags=re.IGNORECASE)

    # Any remaining occurrence in prose, bold or not.
    protected = _protected_spans(text, names_lower)
    span_re = re.compile(r"[ \t]*(\*\*)?(" + re.escape(mention) + r")(?(1)\*\*)", re.IGNORECASE)
    pieces: List[str] = []
    cursor = 0
    for match in span_re.finditer(text):
        core_start, core_end = match.span(2)
        if any(start <= core_start and core_end <= end for start, end in protected):
            continue
        start = match.start()
        end = match.end()
        if start == 0 or text[start - 1] == "\n":
            while end < len(text) and text[end] in " \t":
                end += 1
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)


def _rewrite_link_urls(
    text: str,
    catalog_by_name: Dict[str, CatalogEntry],
    recommended_by_lower: Dict[str, Product],
) -> str:
    def replace(match: "re.Match[str]") -> str:
        link_text = match.group(1)
        url = ""
        entry = catalog_by_name.get(link_text)
        if entry is not None and entry.product_url:
            url = entry.product_url
        else:
            product = recommended_by_lower.get(link_text.lower())
            if product is not None:
                url = product.product_url
        if not url:
            return match.group(0)
        return f"[{link_text}]({url})"

    return LINK_RE.sub(replace, text)


def validate_response(
    response_text: str,
    recommended_products: Sequence[Product],
    catalog_entries: Sequence[CatalogEntry],
) -> ValidationReport:
    """Purpose: Rewrite or strip every product mention that is not a catalog name.
    Inputs/Outputs: Inputs are generator text, the products sent as context and
        all active catalog entries; output is a ValidationReport.
    Side Effects / State: Logs corrections at INFO and hallucinations at WARNING.
    Dependencies: extract_mentions, resolve_mention, _strip_hallucination,
        _rewrite_link_urls.
    Failure Modes: Empty catalog returns the text unchanged with a warning.
    If Removed: Invented products and URLs reach customers.
    Testing Notes: Link URLs always point at the catalog URL afterwards, even when
        the generator supplied a wrong one.
    """
    # Resolve each mention against the full catalog, not just the retrieved set.
    if not response_text:
        return ValidationReport(text=response_text or "")
    if not catalog_entries:
        logger.warning("validation skipped: catalog has no active products")
        return ValidationReport(text=response_text)

    catalog_by_name = {entry.name: entry for entry in catalog_entries}
    names_by_lower: Dict[str, str] = {}
    for entry in catalog_entries:
        names_by_lower.setdefault(entry.name.lower(), entry.name)
    recommended_by_lower = {product.name.lower(): product for product in recommended_products}

    report = ValidationReport(text=response_text)
    text = response_text
    for mention in extract_mentions(response_text):
        resolution = resolve_mention(mention, names_by_lower)
        if resolution.is_hallucination:
            text = _strip_hallucination(text, mention, list(names_by_lower))
            report.stripped.append(mention)
            logger.warning("invalid product mentioned by generator name=%s", mention)
            continue
        if resolution.canonical != mention:
            text = _replace_mention(text, mention, resolution.canonical or mention)
            report.corrected.append(resolution)
            logger.info(
                "corrected product name from=%s to=%s score=%.2f",
                mention,
                resolution.canonical,
                resolution.score,
            )

    text = _rewrite_link_urls(text, catalog_by_name, recommended_by_lower)
    text = BLANK_RUN_RE.sub("\n\n", text).strip()
    if report.stripped:
        logger.warning(
            "removed invalid product mentions names=%s response_chars=%s",
            report.stripped,
            len(response_text),
        )
    report.text = text
    return report


def validate_product_names_in_response(
    response_text: str,
    recommended_products: Sequence[Product],
    catalog_entries: Sequence[CatalogEntry],
) -> str:
    """Return the corrected text only (see validate_response)."""
    return validate_response(response_text, recommended_products, catalog_entries).text


def _significant_name_words(name: str) -> List[str]:
    return [word for word in name.lower().split() if len(word) >= CARD_WORD_MIN_LENGTH]


def is_product_mentioned(response_lower: str, product: Product) -> bool:
    """Exact name, or at least 60% of the name's long words (needs two or more)."""
    name_lower = product.name.lower()
    if name_lower and name_lower in response_lower:
        return True
    words = _significant_name_words(name_lower)
    if len(words) < CARD_MIN_WORDS:
        return False
    matched = len([word for word in words if word in response_lower])
    return matched >= math.ceil(len(words) * CARD_WORD_RATIO)


def filter_mentioned_products(response_text: str, products: Sequence[Product]) -> List[Product]:
    """Purpose: Keep only the products the response actually talks about.
    Inputs/Outputs: Inputs are validated text and candidate products; output is
        the mentioned subset in original order.
    Side Effects / State: Debug log when every card is suppressed.
    Dependencies: is_product_mentioned.
    Failure Modes: None.
    If Removed: Cards show up under clarifying questions that recommend nothing.
    Testing Notes: "Royal Canin Mini Adult" matches a text mentioning "royal"
        "canin" and "adult" (3 of 4 long words).
    """
    # Case-insensitive comparison over the whole response.
    if not response_text or not products:
        return []
    response_lower = response_text.lower()
    mentioned = [product for product in products if is_product_mentioned(response_lower, product)]
    if not mentioned:
        logger.debug("response mentions no products, suppressing cards")
    return mentioned


def is_clarifying_question(text: str) -> bool:
    return bool(text) and bool(QUESTION_MARK_RE.search(text)) and bool(QUESTION_WORD_RE.search(text))


def select_product_cards(response_text: str, products: Sequence[Product]) -> Tuple[List[Product], bool]:
    """Mentioned products, or up to three options while the assistant asks a question.

    Returns (products, shown_while_asking).
    """
    mentioned = filter_mentioned_products(response_text, products)
    if mentioned or not products:
        return mentioned, False
    if is_clarifying_question(response_text):
        logger.debug("showing products while asking clarifying question count=%s", min(len(products), CLARIFYING_CARD_LIMIT))
        return list(products[:CLARIFYING_CARD_LIMIT]), True
    return [], False
