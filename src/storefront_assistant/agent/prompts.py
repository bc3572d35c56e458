"""System prompt and message template for the sales assistant."""

from __future__ import annotations

from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from storefront_assistant.store.base import StoreProfile

SYSTEM_INSTRUCTION_BASE = """
You are a friendly, knowledgeable sales assistant for an online store.
Your goal is to help customers find products, answer their questions and close the sale.

Product search (`recommend_products`):
1) Put the product TYPE in `search_query`: "expensive watch" -> search_query "watch", sort "price_desc".
2) "cheap", "low cost" or "budget" -> sort "price_asc". "expensive" or "premium" -> sort "price_desc".
3) Generic requests ("cheapest product", "recommend anything") -> search_query "best selling".
4) Never leave `search_query` empty.
5) Use `get_product_details` when the customer wants more information about one product.

Answering:
- Product cards are rendered by the storefront. Do not repeat product names, prices or
  details in your text unless the customer asked for a description or a pitch.
- When products were found, say briefly that you found some options.
- If a later message says "it", "that one" or "them", resolve it from the products listed
  in the conversation before searching again.
- The customer may ask several things at once. Call every tool needed in the same turn and
  answer all parts in one reply.
- Never mention databases, configuration, JSON or tools. If information is missing, say you
  do not have the details right now and suggest contacting the store.
- Greet warmly and handle small talk naturally before steering back to shopping.
- Reply in the customer's language.

Human handoff:
- If the customer asks for a human, an agent, a person or support, call
  `request_human_support`. Do not try to keep them talking to you.

Cart and checkout:
- To buy a recommended product, tell the customer to open "View Details" on its card and
  add it to the cart from the product page.
""".strip()

CHAT_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}"),
        MessagesPlaceholder(variable_name="history", optional=True),
        ("human", "{input}"),
    ]
)


def store_context(profile: StoreProfile | None) -> str:
    if profile is None:
        return ""
    lines = [
        "STORE PROFILE:",
        f"- Name: {profile.name}",
        f"- Domain: {profile.domain}",
        f"- Location: {profile.location or 'Not specified'}",
        f"- Website: {profile.website or profile.domain}",
        f"- About: {profile.about or 'Not specified'}",
    ]
    policies = [
        f"{kind.upper()}: {body.strip()}"
        for kind, body in profile.policies.items()
        if body and body.strip()
    ]
    if policies:
        lines.append("")
        lines.append("STORE POLICIES:")
        lines.extend(policies)
    return "\n".join(lines)


def build_system_prompt(profile: StoreProfile | None, tenant: str) -> str:
    """Base instruction plus merchant persona and store context."""
    profile = profile or StoreProfile(domain=tenant)
    assistant_name = profile.assistant_name or (
        f"{profile.name} Assistant" if profile.name else "Helpful Store Assistant"
    )
    sections = [
        SYSTEM_INSTRUCTION_BASE,
        "[MERCHANT SETTINGS]\n"
        f"Assistant Name: {assistant_name}\n"
        f"Tone of Voice: {profile.tone}\n"
        f"Primary Language: {profile.primary_language}",
    ]
    if profile.custom_instructions.strip():
        sections.append(f"Follow these merchant instructions: {profile.custom_instructions.strip()}")
    context = store_context(profile)
    if context:
        sections.append(f"[STORE CONTEXT]\n{context}")
    return "\n\n".join(sections)
