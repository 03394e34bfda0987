"""
Query Term Extraction Tests
===========================

Purpose
-------
Check species inference and search-term rewriting from conversation history.

Scope
-----
- extract_species over history plus the current message.
- extract_search_terms food/species/age rewriting.
"""

# -----------------------------------------------------------------------------
# Libraries
# -----------------------------------------------------------------------------

# Local modules
from mia_assistant.query_terms import extract_search_terms, extract_species


# ----------------------------
# Species
# ----------------------------

def test_species_from_current_message():
    assert extract_species([], "Tengo un gato de 3 años") == "gato"


def test_species_from_history():
    history = [{"role": "user", "content": "Mi perra tiene las articulaciones mal"}]

    assert extract_species(history, "¿Qué me recomiendas?") == "perro"


def test_dog_wins_when_both_are_mentioned():
    assert extract_species([], "Tengo un gato y un perro") == "perro"


def test_species_matches_whole_tokens_only():
    """"canal" must not be read as "can"."""
    assert extract_species([], "Lo vi en vuestro canal de YouTube") is None


# ----------------------------
# Search terms
# ----------------------------

def test_food_conversation_builds_combined_terms():
    """A follow-up answer keeps the food, species and age context."""
    history = [
        {"role": "user", "content": "Busco pienso para mi perro"},
        {"role": "assistant", "content": "¿Qué edad tiene?"},
    ]

    assert extract_search_terms(history, "Tiene 4 años") == "pienso perro adulto"


def test_assistant_turns_do_not_add_terms():
    history = [{"role": "assistant", "content": "¿Buscas pienso o comida húmeda?"}]

    assert extract_search_terms(history, "Antiparasitario para gato") == "Antiparasitario para gato"


def test_puppy_food_terms():
    assert extract_search_terms([], "Comida para cachorro de gato") == "comida gato cachorro"


def test_non_food_message_is_returned_unchanged():
    assert extract_search_terms([], "Collar antiparasitario") == "Collar antiparasitario"
