"""Persona prompts, side-task prompts, and history → API message conversion."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from spurchat.models import Sender
from spurchat.retrieval.catalog import CATEGORY_KEYWORDS, KNOWN_CARDS

if TYPE_CHECKING:
    from spurchat.models import Message

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"

SUPPORT_PERSONA = """\
You are an AI Support Agent for Spur, a customer engagement & automation platform for
ecommerce brands.

ABOUT SPUR
Spur powers AI agents on WhatsApp, Instagram, Live Chat and Facebook, WhatsApp bulk messaging and
automation, and marketing automation for ecommerce brands. It integrates with Shopify, WooCommerce
and custom ecommerce stacks, as well as Stripe, Razorpay, Zoho, LeadSquared, Returnprime and Nector.

WHAT SPUR INCLUDES
- Marketing automation workflows, 12 pre-made customer segments and 10 ecommerce workflows
  (abandoned cart, review collection, etc.)
- Channels: WhatsApp, Instagram, Facebook, Live Chat. Email is coming soon.
- Chatbot builder and automated replies to Instagram comments via DMs (Link Products).
  AI-powered question answering is coming soon.

COMPANY BACKGROUND
Launched on September 5, 2022 on the Shopify App Store. Used by 400+ brands, which have generated
$50M+ in revenue with Spur. Built by a small team of 5 known for hands-on support.

YOUR ROLE
Answer product questions clearly, help users understand features, integrations and use cases,
troubleshoot common issues at a high level and guide users toward the correct next step.

TONE & STYLE
Clear, concise and friendly. Confident but never arrogant. Do NOT oversell.

SUPPORT GUARDRAILS
- Do NOT invent features, integrations, pricing or timelines.
- If something is "coming soon", say so.
- Never share internal-only or confidential details.
- Never criticize competitors directly.

ESCALATION
Escalate to a human ("Let me loop in our team to help you with this.") for billing disputes or
refunds, bugs, outages or data loss, account-level access, frustrated users, or questions beyond
your information.

If a question is ambiguous, ask a clarifying question first. Structure answers as: acknowledge the
question, give a clear answer, offer a helpful next step.
"""

CARD_ADVISOR_PERSONA = """\
You are a knowledgeable credit card advisor. You help users compare cards and understand fees,
rewards, eligibility, benefits and how to apply.

RULES
- Ground every factual claim (fees, reward rates, eligibility) in the RELEVANT CONTEXT below.
- If the context does not cover the question, say you do not have that information rather than
  guessing, and suggest checking the issuer's official website.
- When the user asks for links or documents, list the URLs from the context verbatim.
- Be concise. Use short bullet lists for comparisons.
"""

TITLE_PROMPT = (
    "You are a helpful assistant that generates concise titles for chat conversations "
    "based on the first user message. The title should be 3-5 words max. Do not use quotes."
)


def _read_config(filename: str) -> str:
    """Read a config markdown file, returning empty string if missing."""
    path = CONFIG_DIR / filename
    if path.exists():
        return path.read_text(encoding="utf-8")
    return ""


def support_persona() -> str:
    """Persona for the standard strategy. ``config/SUPPORT.md`` overrides the default."""
    return _read_config("SUPPORT.md") or SUPPORT_PERSONA


def card_advisor_persona() -> str:
    """Persona for the retrieval strategy. ``config/CARDS.md`` overrides the default."""
    return _read_config("CARDS.md") or CARD_ADVISOR_PERSONA


def build_classification_prompt() -> str:
    """System prompt asking the model to detect which card a query is about."""
    cards = "\n".join(f'- "{name}" -> {slug}' for name, slug in KNOWN_CARDS.items())
    categories = "\n".join(
        f"- {category}: {', '.join(words)}" for category, words in CATEGORY_KEYWORDS.items()
    )
    return (
        "Identify which credit card the user's message is about and what kind of "
        "information they want.\n\n"
        f"Known cards (name -> slug):\n{cards}\n\n"
        f"Information categories and typical keywords:\n{categories}\n\n"
        "Respond with a single JSON object and nothing else:\n"
        '{"cardName": string|null, "cardSlug": string|null, "requestedInfo": string|null}\n'
        "Use null for anything you cannot determine. Only use slugs from the list."
    )


def build_title_request(message: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": f'Generate a title for this message: "{message}"'}]


def clean_title(raw: str) -> str:
    """Strip whitespace, wrapping quotes and trailing periods from a model title."""
    title = raw.strip().splitlines()[0].strip() if raw.strip() else ""
    return title.strip("\"'`").rstrip(".").strip()


def to_api_messages(memory: list[Message]) -> list[dict[str, str]]:
    """Format stored history for the Claude API.

    ``ai`` turns become ``assistant``. Consecutive turns from the same role
    (e.g. a user message whose reply failed) are merged so roles alternate.
    """
    messages: list[dict[str, str]] = []
    for msg in memory:
        role = "user" if msg.sender == Sender.USER else "assistant"
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n\n{msg.content}"
        else:
            messages.append({"role": role, "content": msg.content})
    return messages
