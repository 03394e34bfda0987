"""Assemble the generator input: system message sections and trimmed history."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from .catalog import Product
from .documents import DocumentChunk

HISTORY_TURNS = 10
DESCRIPTION_CHARS = 200

SECTION_PRODUCT_PAGE = "--- CONTEXTO DEL PRODUCTO ACTUAL ---"
SECTION_CATALOG = "--- PRODUCTOS RELEVANTES DEL CATÁLOGO ---"
SECTION_DOCUMENTS = "--- INFORMACIÓN TÉCNICA (VADEMECUM) ---"

STRICT_HEADER = (
    "PRODUCTOS RELEVANTES DEL CATÁLOGO:\n"
    "Estos son productos que podrían encajar con lo que busca. Usa el NOMBRE EXACTO tal cual "
    "aparece aquí (copia y pega). Si ninguno encaja perfectamente, recomienda el MÁS SIMILAR y "
    "explica por qué podría servirle."
)
ALTERNATIVE_HEADER = (
    "PRODUCTOS ALTERNATIVOS DISPONIBLES:\n"
    "No tenemos un producto exacto, pero estas opciones podrían ser útiles. Usa el NOMBRE EXACTO "
    "tal cual aparece aquí. Explica por qué podrían servirle y ofrece más información si necesita."
)


def format_products_for_context(products: Sequence[Product], is_alternative: bool = False) -> str:
    """Purpose: Render retrieved products as the catalog block of the system message.
    Inputs/Outputs: Inputs are products and the alternative flag; output is text
        ("" for no products).
    Side Effects / State: None.
    Dependencies: STRICT_HEADER / ALTERNATIVE_HEADER.
    Failure Modes: None.
    If Removed: The generator has no product names to quote.
    Testing Notes: Each item starts with `N. NOMBRE EXACTO: "<name>"`; descriptions
        are cut at 200 characters.
    """
    # Strict framing for direct matches, softer framing for alternatives.
    if not products:
        return ""
    header = ALTERNATIVE_HEADER if is_alternative else STRICT_HEADER
    items: List[str] = []
    for index, product in enumerate(products, start=1):
        lines = [f'{index}. NOMBRE EXACTO: "{product.name}"']
        if product.brand:
            lines.append(f"   Marca: {product.brand}")
        if product.price:
            lines.append(f"   Precio: {product.price:g}€")
        if product.species:
            lines.append(f"   Especie: {product.species}")
        if product.category:
            lines.append(f"   Categoría: {product.category}")
        if product.subcategory:
            lines.append(f"   Subcategoría: {product.subcategory}")
        if product.product_url:
            lines.append(f"   Enlace: {product.product_url}")
        if product.description:
            lines.append(f"   Descripción: {product.description[:DESCRIPTION_CHARS]}")
        if product.indications:
            lines.append(f"   Indicaciones: {product.indications}")
        if product.requires_prescription:
            lines.append("   ⚠️ Requiere receta veterinaria")
        items.append("\n".join(lines))
    return header + "\n\n" + "\n\n".join(items)


def format_product_page_context(context: Optional[Mapping[str, Any]]) -> str:
    """One-line summary of the product page the user is browsing."""
    if not context:
        return ""
    return (
        f"Producto: {context.get('name') or ''}. "
        f"Precio: {context.get('price') or ''}€. "
        f"Categoría: {context.get('category') or ''}. "
        f"Descripción: {context.get('description') or ''}"
    )


def format_document_context(chunks: Sequence[DocumentChunk]) -> str:
    return "\n\n".join(f"[{chunk.name}]: {chunk.content}" for chunk in chunks)


def build_system_message(
    system_prompt: str,
    product_page: str = "",
    catalog: str = "",
    documents: str = "",
) -> str:
    """Purpose: Join the system prompt with the optional context sections.
    Inputs/Outputs: Inputs are the prompt and pre-rendered sections; output is
        the full system instruction.
    Side Effects / State: None.
    Dependencies: Section header constants.
    Failure Modes: Empty sections are omitted.
    If Removed: The generator sees no catalog grounding.
    Testing Notes: Section order is product page, catalog, documents.
    """
    # Append only non-empty sections, each under its fixed header.
    parts = [system_prompt]
    if product_page:
        parts.append(f"{SECTION_PRODUCT_PAGE}\nEl usuario está viendo esta página de producto:\n{product_page}")
    if catalog:
        parts.append(f"{SECTION_CATALOG}\n{catalog}")
    if documents:
        parts.append(f"{SECTION_DOCUMENTS}\n{documents}")
    return "\n\n".join(parts)


def trim_history(history: Sequence[Dict[str, str]], turns: int = HISTORY_TURNS) -> List[Dict[str, str]]:
    """Keep the last `turns` role/content messages, oldest first."""
    if turns <= 0:
        return []
    return [{"role": item["role"], "content": item["content"]} for item in list(history)[-turns:]]


def format_product_card(product: Product) -> Dict[str, Any]:
    """UI card payload for a product."""
    return {
        "id": product.id,
        "name": product.name,
        "brand": product.brand,
        "price": product.price,
        "species": product.species,
        "category": product.category,
        "image_url": product.image_url,
        "product_url": product.product_url,
        "add_to_cart_url": product.add_to_cart_url,
        "requires_prescription": product.requires_prescription,
        "indications": product.indications,
    }
