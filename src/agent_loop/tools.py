# tools.py
# Sample action registry: the purchase-advisor actions over catalog.py.
# The loop and the coordinator import TOOLS and never call these handlers
# directly; they go through Action.execute().

import json
from typing import Any

from pydantic import ValidationError

from agent_loop import catalog
from agent_loop.models import Action, ActionOutcome, Recommendation, build_registry


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_product(product: dict[str, Any]) -> str:
    specs = product["specs"]
    return "\n".join(
        [
            f"ID: {product['id']}",
            f"Name: {product['name']}",
            f"Brand: {product['brand']}",
            f"Price: ${product['price']:.2f}",
            f"Rating: {product['rating']}/5 ({product['review_count']} reviews)",
            f"CPU: {specs['cpu']}",
            f"RAM: {specs['ram']}",
            f"Storage: {specs['storage']}",
            f"Display: {specs['display']} {specs['display_type']}",
            f"Weight: {specs['weight']} lbs",
            f"Tags: {', '.join(product['tags'])}",
            f"In Stock: {'Yes' if product['in_stock'] else 'No'}",
        ]
    )


def _format_review(review: dict[str, Any]) -> str:
    rating = review["rating"]
    verified = "[Verified Purchase]" if review["verified"] else "[Unverified]"
    return "\n".join(
        [
            f"Rating: {'★' * rating}{'☆' * (5 - rating)} ({rating}/5) {verified}",
            f'Title: "{review["title"]}"',
            f'"{review["body"]}"',
            f"- {review['author']}, {review['date']} ({review['helpful']} found helpful)",
        ]
    )


def _summarize_reviews(reviews: list[dict[str, Any]]) -> str:
    average = sum(r["rating"] for r in reviews) / len(reviews)
    verified = sum(1 for r in reviews if r["verified"])
    distribution = {stars: 0 for stars in (5, 4, 3, 2, 1)}
    for review in reviews:
        distribution[review["rating"]] += 1
    spread = " ".join(f"{stars}★({count})" for stars, count in distribution.items())
    return "\n".join(
        [
            f"Average Rating: {average:.1f}/5",
            f"Total Reviews: {len(reviews)}",
            f"Verified Purchases: {verified}/{len(reviews)}",
            f"Distribution: {spread}",
        ]
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _tool_search_products(args: dict) -> ActionOutcome:
    results = catalog.search_products(
        query=args.get("query"),
        category=args.get("category"),
        max_price=args.get("max_price"),
        min_price=args.get("min_price"),
        min_rating=args.get("min_rating"),
        tags=args.get("tags"),
        in_stock=True,
    )
    if not results:
        return ActionOutcome.ok("No products found matching the criteria. Try broadening your search.")

    top = results[:10]
    lines = [f"Found {len(results)} products (showing top {len(top)}):", ""]
    for index, product in enumerate(top, start=1):
        lines.append(f"--- Product {index} ---\n{_format_product(product)}")
    return ActionOutcome.ok("\n".join(lines), data={"ids": [p["id"] for p in top]})


def _tool_get_reviews(args: dict) -> str:
    product_id = str(args.get("product_id", "")).strip()
    if not product_id:
        return "Error: no product_id provided."

    product = catalog.get_product(product_id)
    if product is None:
        return f'Error: Product "{product_id}" not found. Use search_products to find valid product IDs.'

    reviews = catalog.get_reviews(product_id)
    if not reviews:
        return f"No reviews found for {product['name']} ({product_id})."

    return "\n".join(
        [
            f"=== Reviews for {product['name']} ===",
            f"Price: ${product['price']:.2f}",
            "",
            "--- Summary ---",
            _summarize_reviews(reviews),
            "",
            "--- Individual Reviews ---",
            *(_format_review(r) for r in reviews),
        ]
    )


_SPEC_LABELS = {
    "cpu": "CPU",
    "cpu_cores": "CPU Cores",
    "ram": "RAM",
    "storage": "Storage",
    "display": "Display Size",
    "display_type": "Display Type",
    "gpu": "GPU",
    "weight": "Weight (lbs)",
    "battery": "Battery",
}


def _tool_compare_specs(args: dict) -> str:
    product_ids = args.get("product_ids") or []
    if len(product_ids) < 2:
        return "Error: Please provide at least 2 product IDs to compare."
    if len(product_ids) > 5:
        return "Error: Maximum 5 products can be compared at once. Please reduce your selection."

    missing = [pid for pid in product_ids if catalog.get_product(pid) is None]
    if missing:
        return f"Error: Products not found: {', '.join(missing)}. Use search_products to find valid IDs."

    products = [catalog.get_product(pid) for pid in product_ids]
    headers = ["Spec", *(p["name"][:20] for p in products)]
    rows = [[label, *(str(p["specs"][key]) for p in products)] for key, label in _SPEC_LABELS.items()]
    rows.append(["Price ($)", *(f"${p['price']:.0f}" for p in products)])
    rows.append(["Rating", *(f"{p['rating']}/5" for p in products)])

    widths = [max(len(row[i]) for row in [headers, *rows]) for i in range(len(headers))]

    def fmt(cells: list[str]) -> str:
        return " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells))

    return "\n".join(
        [
            "=== Product Comparison ===",
            "",
            fmt(headers),
            "-+-".join("-" * w for w in widths),
            *(fmt(row) for row in rows),
            "",
            "--- Tags ---",
            *(f"{p['name']}: {', '.join(p['tags'])}" for p in products),
        ]
    )


def _tool_done(args: dict) -> ActionOutcome:
    """Terminator. Accepts {"result": ...} or the recommendation fields directly."""
    if "result" in args:
        result = args["result"]
        text = result if isinstance(result, str) else json.dumps(result)
    else:
        text = json.dumps(args)
    return ActionOutcome.terminate(text)


# ---------------------------------------------------------------------------
# Result parsing
# ---------------------------------------------------------------------------


def parse_recommendation(result: str) -> Recommendation | None:
    """Parse a `done` result into a Recommendation; None if it is not one."""
    try:
        data = json.loads(result)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict) or not data.get("recommendation") or not data.get("reasoning"):
        return None
    try:
        return Recommendation.model_validate(data)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

SEARCH_PRODUCTS = Action(
    name="search_products",
    description=(
        "Search for products in the catalog. Returns in-stock products matching the "
        "criteria, sorted by rating."
    ),
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": 'e.g. "programming" or "OLED"'},
            "category": {"type": "string", "enum": ["laptops"]},
            "max_price": {"type": "number", "description": "Maximum price in USD"},
            "min_price": {"type": "number", "description": "Minimum price in USD"},
            "min_rating": {"type": "number", "description": "Minimum rating (1-5)"},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": [],
    },
    handler=_tool_search_products,
)

GET_REVIEWS = Action(
    name="get_reviews",
    description="Get reviews for a specific product by ID, with summary statistics.",
    parameters={
        "type": "object",
        "properties": {"product_id": {"type": "string", "description": 'e.g. "laptop-001"'}},
        "required": ["product_id"],
    },
    handler=_tool_get_reviews,
)

COMPARE_SPECS = Action(
    name="compare_specs",
    description="Compare specifications of 2-5 products side-by-side.",
    parameters={
        "type": "object",
        "properties": {"product_ids": {"type": "array", "items": {"type": "string"}}},
        "required": ["product_ids"],
    },
    handler=_tool_compare_specs,
)

DONE = Action(
    name="done",
    description=(
        "Signal that the task is complete. `result` is a JSON object with: recommendation "
        "(product ID), reasoning, confidence (0-1), alternatives (array of {id, reason})."
    ),
    parameters={
        "type": "object",
        "properties": {"result": {"type": "string", "description": "Final result as JSON"}},
        "required": ["result"],
    },
    handler=_tool_done,
)

ALL_ACTIONS: list[Action] = [SEARCH_PRODUCTS, GET_REVIEWS, COMPARE_SPECS, DONE]

TOOLS: dict[str, Action] = build_registry(ALL_ACTIONS)
