"""Known cards and content categories used to scope vector lookups."""

import re

# Display name → slug stored in each chunk's ``card_slug`` metadata.
KNOWN_CARDS: dict[str, str] = {
    "HDFC Regalia Gold": "hdfc-regalia-gold",
    "HDFC Millennia": "hdfc-millennia",
    "SBI SimplyCLICK": "sbi-simplyclick",
    "SBI Cashback": "sbi-cashback",
    "ICICI Amazon Pay": "icici-amazon-pay",
    "Axis Magnus": "axis-magnus",
    "Axis Flipkart": "axis-flipkart",
    "American Express Platinum Travel": "amex-platinum-travel",
}

LINK_CATEGORY = "links"

# Queried for every detected card, one top-1 lookup each.
BASE_CATEGORIES: tuple[str, ...] = ("overview", "fees", "rewards", "eligibility", "benefits")

# Guidance for the classifier: which words point at which category.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "overview": ("about", "what is", "summary", "overview"),
    "fees": ("fee", "annual", "joining", "charges", "interest", "renewal"),
    "rewards": ("reward", "points", "cashback", "miles", "redeem"),
    "eligibility": ("eligible", "eligibility", "income", "age", "criteria", "credit score"),
    "benefits": ("lounge", "insurance", "offer", "benefit", "milestone", "discount"),
    LINK_CATEGORY: ("link", "url", "website", "apply", "brochure", "document"),
}

LINK_KEYWORDS: tuple[str, ...] = (
    "link",
    "url",
    "website",
    "apply",
    "document",
    "pdf",
    "brochure",
    "form",
    "download",
    "terms",
)

_LINK_PATTERN = re.compile(r"\b(" + "|".join(LINK_KEYWORDS) + r")", re.IGNORECASE)


def known_categories() -> set[str]:
    return set(CATEGORY_KEYWORDS)


def wants_links(query: str) -> bool:
    """True when the query asks for links, documents or application pages."""
    return bool(_LINK_PATTERN.search(query))


def categories_for(query: str, requested_category: str | None = None) -> list[str]:
    """Categories to query for one detected card, in lookup order."""
    categories = list(BASE_CATEGORIES)
    if requested_category and requested_category in known_categories():
        if requested_category not in categories:
            categories.append(requested_category)
    if wants_links(query) and LINK_CATEGORY not in categories:
        categories.append(LINK_CATEGORY)
    return categories
