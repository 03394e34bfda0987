"""Fixed Spanish (es-ES) responses for safety routes, clinic lookups and failures."""

from __future__ import annotations

from typing import Dict, List, Optional

RESPONSE_EMERGENCY = "emergency_warning"
RESPONSE_VET_REFERRAL = "vet_referral"
RESPONSE_MEDICAL_LIMIT = "medical_limit"
RESPONSE_RX_LIMIT = "rx_limit"
RESPONSE_WELCOME = "welcome"
RESPONSE_SYMPTOM_TRANSITION = "symptom_transition"
RESPONSE_NO_CLINIC = "no_clinic"
RESPONSE_RATE_LIMIT = "rate_limit"
RESPONSE_GENERATOR_ERROR = "generator_error"

POSTAL_CODE_INVITE = "Podemos recomendarte los mejores veterinarios de tu zona. Solo indícanos tu código postal."

TEMPLATES: Dict[str, str] = {
    RESPONSE_EMERGENCY: (
        "🚨 **Atención urgente**\n\n"
        "Según lo que describes, esto podría ser una **emergencia veterinaria**. "
        "Este chat no puede atender emergencias ni realizar valoraciones clínicas.\n\n"
        "**Te recomiendo acudir a tu veterinario o a un servicio de urgencias veterinarias "
        "de forma inmediata.**\n\n" + POSTAL_CODE_INVITE
    ),
    RESPONSE_VET_REFERRAL: (
        "Por seguridad, lo que describes requiere valoración de un veterinario, ya que aquí no "
        "puedo diagnosticar ni recomendar tratamientos.\n\n"
        "Si quieres, puedo ayudarte a elegir productos de apoyo (por ejemplo, dieta digestiva, "
        "productos de higiene, etc.) solo si tu veterinario lo ha recomendado o si me dices qué "
        "producto estabas mirando.\n\n"
        "También podemos recomendarte los mejores veterinarios de tu zona. Solo indícanos tu código postal."
    ),
    RESPONSE_MEDICAL_LIMIT: (
        "Entiendo tu preocupación. No puedo diagnosticar, prescribir ni ajustar dosis/tratamientos.\n"
        "Lo mejor es que tu veterinario lo valore.\n\n"
        "Si me dices el producto que estás valorando (o el peso/especie), puedo orientarte sobre las "
        "diferencias entre opciones y su uso general según la ficha.\n\n"
        "También podemos recomendarte los mejores veterinarios de tu zona. Solo indícanos tu código postal."
    ),
    RESPONSE_RX_LIMIT: (
        "Para medicamentos que requieren receta veterinaria, la indicación y la dosis deben venir "
        "de un veterinario.\n\n" + POSTAL_CODE_INVITE
    ),
    RESPONSE_WELCOME: (
        "¡Hola! 👋 Soy **MIA**, tu asistente veterinario en MundoMascotix.\n\n"
        "Te ayudo a elegir el mejor producto para tu mascota. Pregúntame sobre alimentación, "
        "antiparasitarios, higiene y más.\n\n"
        "¿En qué puedo ayudarte?"
    ),
    RESPONSE_SYMPTOM_TRANSITION: (
        "Si tu consulta está relacionada con síntomas, lo más indicado es que tu veterinario lo valore.\n\n"
        "Si por el contrario necesitas elegir un producto (antiparasitario, dieta, higiene, etc.), "
        "dime la especie y el peso aproximado y te sugiero opciones del catálogo."
    ),
    RESPONSE_NO_CLINIC: (
        "¡Ups! 🐾\n\n"
        "Todavía no hemos evaluado ninguna clínica veterinaria en tu zona para poder recomendártela "
        "con total confianza.\n\n"
        "Si quieres, déjanos tu email y te avisamos en cuanto una clínica de tu área supere nuestro "
        "control de calidad ✅✨\n\n"
        "Así serás el primero en enterarte."
    ),
    RESPONSE_RATE_LIMIT: (
        "Disculpa, estamos recibiendo muchas consultas en este momento. "
        "Por favor, inténtalo de nuevo en unos segundos."
    ),
    RESPONSE_GENERATOR_ERROR: (
        "Lo siento, ha ocurrido un error al procesar tu consulta. Por favor, inténtalo de nuevo."
    ),
}


def get_template(template_type: str) -> Optional[str]:
    """Return the message for a template type, or None when unknown."""
    return TEMPLATES.get(template_type)


def get_welcome_message() -> str:
    return TEMPLATES[RESPONSE_WELCOME]


def get_template_types() -> List[str]:
    return list(TEMPLATES.keys())
