# catalog.py
# Small in-memory laptop catalog backing the sample actions in tools.py.
# Read-only module data; lookups return the shared dicts, callers must not mutate.

from typing import Any

PRODUCTS: list[dict[str, Any]] = [
    {
        "id": "laptop-001",
        "name": "ThinkPad X1 Carbon Gen 12",
        "brand": "Lenovo",
        "category": "laptops",
        "price": 1449.00,
        "rating": 4.7,
        "review_count": 812,
        "in_stock": True,
        "tags": ["programming", "business", "keyboard", "linux", "lightweight"],
        "specs": {
            "cpu": "Intel Core Ultra 7 155U",
            "cpu_cores": 12,
            "ram": "32GB",
            "storage": "1TB SSD",
            "display": '14"',
            "display_type": "IPS",
            "gpu": "Intel Graphics",
            "weight": 2.4,
            "battery": "15 hours",
        },
    },
    {
        "id": "laptop-002",
        "name": "ROG Zephyrus G14",
        "brand": "ASUS",
        "category": "laptops",
        "price": 1599.00,
        "rating": 4.6,
        "review_count": 640,
        "in_stock": True,
        "tags": ["gaming", "video editing", "oled"],
        "specs": {
            "cpu": "AMD Ryzen 9 8945HS",
            "cpu_cores": 8,
            "ram": "32GB",
            "storage": "1TB SSD",
            "display": '14"',
            "display_type": "OLED",
            "gpu": "NVIDIA RTX 4070",
            "weight": 3.3,
            "battery": "10 hours",
        },
    },
    {
        "id": "laptop-003",
        "name": "MacBook Air M3 15",
        "brand": "Apple",
        "category": "laptops",
        "price": 1299.00,
        "rating": 4.8,
        "review_count": 1530,
        "in_stock": True,
        "tags": ["programming", "student", "lightweight", "battery"],
        "specs": {
            "cpu": "Apple M3",
            "cpu_cores": 8,
            "ram": "16GB",
            "storage": "512GB SSD",
            "display": '15.3"',
            "display_type": "Liquid Retina",
            "gpu": "Apple 10-core GPU",
            "weight": 3.3,
            "battery": "18 hours",
        },
    },
    {
        "id": "laptop-004",
        "name": "IdeaPad Slim 3",
        "brand": "Lenovo",
        "category": "laptops",
        "price": 449.00,
        "rating": 4.1,
        "review_count": 300,
        "in_stock": True,
        "tags": ["budget", "student"],
        "specs": {
            "cpu": "AMD Ryzen 5 7520U",
            "cpu_cores": 4,
            "ram": "8GB",
            "storage": "256GB SSD",
            "display": '15.6"',
            "display_type": "TN",
            "gpu": "AMD Radeon 610M",
            "weight": 3.5,
            "battery": "8 hours",
        },
    },
    {
        "id": "laptop-005",
        "name": "XPS 16",
        "brand": "Dell",
        "category": "laptops",
        "price": 2499.00,
        "rating": 4.3,
        "review_count": 210,
        "in_stock": True,
        "tags": ["video editing", "oled", "premium"],
        "specs": {
            "cpu": "Intel Core Ultra 9 185H",
            "cpu_cores": 16,
            "ram": "64GB",
            "storage": "2TB SSD",
            "display": '16.3"',
            "display_type": "OLED",
            "gpu": "NVIDIA RTX 4070",
            "weight": 4.7,
            "battery": "9 hours",
        },
    },
    {
        "id": "laptop-006",
        "name": "Framework Laptop 13",
        "brand": "Framework",
        "category": "laptops",
        "price": 1049.00,
        "rating": 4.5,
        "review_count": 420,
        "in_stock": False,
        "tags": ["programming", "linux", "repairable"],
        "specs": {
            "cpu": "AMD Ryzen 7 7840U",
            "cpu_cores": 8,
            "ram": "16GB",
            "storage": "1TB SSD",
            "display": '13.5"',
            "display_type": "IPS",
            "gpu": "AMD Radeon 780M",
            "weight": 2.9,
            "battery": "11 hours",
        },
    },
    {
        "id": "laptop-007",
        "name": "Galaxy Book4 Pro",
        "brand": "Samsung",
        "category": "laptops",
        "price": 1399.00,
        "rating": 4.4,
        "review_count": 190,
        "in_stock": True,
        "tags": ["programming", "oled", "business", "lightweight"],
        "specs": {
            "cpu": "Intel Core Ultra 7 155H",
            "cpu_cores": 16,
            "ram": "16GB",
            "storage": "512GB SSD",
            "display": '14"',
            "display_type": "AMOLED",
            "gpu": "Intel Arc",
            "weight": 2.6,
            "battery": "13 hours",
        },
    },
    {
        "id": "laptop-008",
        "name": "Aspire 5",
        "brand": "Acer",
        "category": "laptops",
        "price": 629.00,
        "rating": 3.9,
        "review_count": 520,
        "in_stock": True,
        "tags": ["budget", "business", "student"],
        "specs": {
            "cpu": "Intel Core i5-1335U",
            "cpu_cores": 10,
            "ram": "16GB",
            "storage": "512GB SSD",
            "display": '15.6"',
            "display_type": "IPS",
            "gpu": "Intel Iris Xe",
            "weight": 3.9,
            "battery": "9 hours",
        },
    },
]

REVIEWS: dict[str, list[dict[str, Any]]] = {
    "laptop-001": [
        {"rating": 5, "title": "Best keyboard on any laptop", "body": "Typing all day is a pleasure. Linux support is flawless.", "verified": True, "helpful": 88, "date": "2024-05-02", "author": "devops_dan"},
        {"rating": 4, "title": "Great, but pricey", "body": "Excellent build; the webcam is only average.", "verified": True, "helpful": 31, "date": "2024-06-18", "author": "mkay"},
    ],
    "laptop-002": [
        {"rating": 5, "title": "Portable powerhouse", "body": "Runs every game I own at high settings.", "verified": True, "helpful": 54, "date": "2024-04-11", "author": "fragmaster"},
        {"rating": 3, "title": "Loud fans", "body": "Performance is great but the fans are noisy under load.", "verified": False, "helpful": 12, "date": "2024-07-01", "author": "quietplease"},
    ],
    "laptop-003": [
        {"rating": 5, "title": "Silent and fast", "body": "No fan, all-day battery, compiles quickly.", "verified": True, "helpful": 140, "date": "2024-03-22", "author": "swift_sam"},
        {"rating": 4, "title": "Wish it had more ports", "body": "Two USB-C ports are not enough for my desk setup.", "verified": True, "helpful": 40, "date": "2024-05-30", "author": "hubhunter"},
    ],
    "laptop-004": [
        {"rating": 4, "title": "Good value", "body": "Fine for notes and browsing.", "verified": True, "helpful": 20, "date": "2024-02-14", "author": "freshman"},
    ],
    "laptop-007": [
        {"rating": 4, "title": "Gorgeous screen", "body": "The AMOLED display is stunning; keyboard is shallow.", "verified": True, "helpful": 17, "date": "2024-06-05", "author": "pixelpeep"},
    ],
}


def get_product(product_id: str) -> dict[str, Any] | None:
    for product in PRODUCTS:
        if product["id"] == product_id:
            return product
    return None


def get_reviews(product_id: str) -> list[dict[str, Any]]:
    return REVIEWS.get(product_id, [])


def search_products(
    query: str | None = None,
    category: str | None = None,
    max_price: float | None = None,
    min_price: float | None = None,
    min_rating: float | None = None,
    tags: list[str] | None = None,
    in_stock: bool | None = None,
) -> list[dict[str, Any]]:
    """Filter the catalog by every given criterion, best rated first."""
    results = list(PRODUCTS)

    if category:
        results = [p for p in results if p["category"].lower() == category.lower()]
    if max_price is not None:
        results = [p for p in results if p["price"] <= max_price]
    if min_price is not None:
        results = [p for p in results if p["price"] >= min_price]
    if min_rating is not None:
        results = [p for p in results if p["rating"] >= min_rating]
    if in_stock is not None:
        results = [p for p in results if p["in_stock"] == in_stock]
    if tags:
        wanted = [t.lower() for t in tags]
        results = [p for p in results if any(w in t.lower() for w in wanted for t in p["tags"])]
    if query:
        needle = query.lower()

        def haystack(p: dict[str, Any]) -> str:
            specs = p["specs"]
            return " ".join(
                [p["name"], p["brand"], *p["tags"], specs["cpu"], specs["gpu"], specs["display_type"]]
            ).lower()

        results = [p for p in results if needle in haystack(p)]

    return sorted(results, key=lambda p: p["rating"], reverse=True)
