"""
Bot wording and quick replies for the shopping interview.

Kept separate from the state machine so wording can change without
touching transitions.
"""
from typing import List, Optional

WELCOME_INTRO = (
    "🛍️ Bonjour ! Je suis votre assistant shopping intelligent. Je vais vous aider "
    "à trouver les meilleurs partenaires pour vos achats.\n\n"
    "Pour commencer, j'ai besoin de quelques informations :"
)
PRODUCT_TYPE_QUESTION = (
    "🏷️ Quel type de produit recherchez-vous ?\n"
    "(ex: vêtements, électronique, électroménager, accessoires, etc.)"
)
BUDGET_QUESTION = (
    "💰 Quelle est votre fourchette de budget ?\n"
    "(Indiquez un montant minimum et maximum en euros)"
)
LOCATION_QUESTION = "📍 Dans quelle ville ou région souhaitez-vous trouver ce produit ?"

CATEGORY_BUTTONS = ["Vêtements", "Électronique", "Électroménager", "Accessoires", "Sport & Loisirs", "Maison & Jardin"]
BUDGET_BUTTONS = ["50-200€", "100-500€", "500-1000€", "Pas de limite"]
CITY_BUTTONS = ["Casablanca", "Rabat", "Marrakech", "Fès", "Tout le Maroc"]

NEW_SEARCH = "Nouvelle recherche"
MODIFY_SEARCH = "Modifier ma recherche"
RESTART_COMMANDS = (NEW_SEARCH, MODIFY_SEARCH)

BUDGET_EXAMPLES = '💡 Exemples:\n• "Entre 50 et 200 euros"\n• "Maximum 100 euros"\n• "Pas de limite de budget"'

INTERNAL_ERROR = "❌ Désolé, une erreur s'est produite. Recommençons votre recherche."
SEARCH_ERROR = "❌ Erreur lors de la recherche. Veuillez réessayer."
KNOWLEDGE_UNAVAILABLE = (
    "😔 Je n'arrive pas à consulter notre base d'informations pour le moment. "
    "Veuillez réessayer dans quelques instants."
)


def _bullets(items: List[str], marker: str = "🔘") -> str:
    return "\n".join(f"{marker} {item}" for item in items)


def format_budget(budget_min: Optional[int], budget_max: Optional[int], no_limit: int) -> str:
    if budget_max is None or budget_max >= no_limit:
        return f"à partir de {budget_min or 0}€ (sans limite)"
    return f"{budget_min or 0}€ - {budget_max}€"


def welcome_message() -> str:
    return (
        f"{WELCOME_INTRO}\n\n{PRODUCT_TYPE_QUESTION}\n\n{_bullets(CATEGORY_BUTTONS)}"
        "\n\n💬 Ou décrivez ce que vous cherchez..."
    )


def product_type_accepted(product_type: str) -> str:
    return f"✅ Parfait ! Vous recherchez: **{product_type}**\n\n{BUDGET_QUESTION}\n\n{BUDGET_EXAMPLES}"


def product_type_reprompt() -> str:
    return f"❓ Je n'ai pas bien compris le type de produit. {PRODUCT_TYPE_QUESTION}\n\n{_bullets(CATEGORY_BUTTONS)}"


def budget_accepted(budget_min: int, budget_max: int, no_limit: int) -> str:
    return (
        f"💰 Budget noté: {format_budget(budget_min, budget_max, no_limit)}\n\n{LOCATION_QUESTION}"
        f"\n\n🏙️ Villes populaires:\n{_bullets(CITY_BUTTONS[:-1], '•')}"
    )


def budget_reprompt() -> str:
    return (
        f"❓ Je n'ai pas bien compris votre budget. {BUDGET_QUESTION}\n\n"
        '💡 Exemples valides:\n• "Entre 50 et 200 euros"\n• "Maximum 100 euros"\n• "Pas de limite"'
    )


def budget_invalid(errors: List[str]) -> str:
    details = "\n".join(f"• {e}" for e in errors)
    return f"⚠️ Ce budget n'est pas valide :\n{details}\n\n{BUDGET_QUESTION}\n\n{BUDGET_EXAMPLES}"


def location_reprompt() -> str:
    return f"📍 Veuillez préciser une ville. {LOCATION_QUESTION}\n\n🏙️ Exemples: Casablanca, Rabat, Meknès, Oujda, Fès..."


def no_results(product_type: Optional[str], budget: str, city: Optional[str]) -> str:
    return (
        "😔 Aucun partenaire ne correspond exactement à vos critères:\n"
        f"• **Produit**: {product_type or 'tous'}\n"
        f"• **Budget**: {budget}\n"
        f"• **Ville**: {city or 'Tout le Maroc'}\n\n"
        "🔄 **Suggestions pour élargir votre recherche:**"
    )


def results_header(count: int) -> str:
    return f"🎉 **{count} partenaire(s) trouvé(s) !**\n\n"


def more_partners(remaining: int) -> str:
    return f"... et {remaining} autre(s) partenaire(s)\n\n"


RESULTS_FOOTER = "✨ **Merci d'avoir utilisé notre service !**\nN'hésitez pas à revenir pour d'autres recherches."


def image_success(product_type: str, confidence: float) -> str:
    return (
        "📸 **Image analysée avec succès !**\n"
        f"🏷️ Produit détecté: **{product_type}**\n"
        f"🎯 Confiance: {round(confidence * 100)}%\n\n{BUDGET_QUESTION}"
    )


def image_failure() -> str:
    return f"❌ Impossible d'analyser l'image. {PRODUCT_TYPE_QUESTION}"
