"""
Rule-based product classifier.

Deterministic fallback used when the vision LLM output is missing fields.
Keyword/pattern matching over the detected objects, labels and OCR text:

1. Hierarchical classification: primary category -> sub-category -> product
   name (brand/model patterns, then descriptive adjectives, then a generic
   noun for the sub-category).
2. If that is not confident enough (<= 70), feature-based classification
   from the first detected item.

Audience and keyword lists come from fixed per-category lookup tables.
No external calls are made here.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .constants import PRODUCT_CATEGORIES

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 70
MAX_CLASSIFIER_CONFIDENCE = 95

# Order matters: first match wins.
PRIMARY_CATEGORY_PATTERNS: List[Tuple[str, str]] = [
    ("electronics", r"phone|smartphone|iphone|android|mobile|tablet|laptop|computer|tv|camera|headphone|speaker|watch|smartwatch"),
    ("fashion", r"shirt|dress|pants|jeans|shoe|boot|sneaker|jacket|coat|hat|bag|purse|clothing|apparel|fashion|wear"),
    ("food", r"food|meal|burger|pizza|sandwich|drink|beverage|snack|restaurant|kitchen|cooking|eat|dish"),
    ("health", r"supplement|vitamin|medicine|health|beauty|cosmetic|skincare|makeup|cream|lotion|shampoo"),
    ("home", r"furniture|chair|table|bed|sofa|lamp|decoration|plant|garden|home|house|room"),
    ("sports", r"sport|fitness|gym|exercise|ball|equipment|outdoor|bike|run|swim|yoga"),
    ("automotive", r"car|auto|vehicle|tire|engine|part|motor|drive|wheel|brake"),
    ("books", r"book|read|education|learn|study|school|university|knowledge|text"),
    ("toys", r"toy|game|play|child|kid|puzzle|doll|action|figure|board|card"),
    ("jewelry", r"jewelry|ring|necklace|bracelet|watch|accessory|gold|silver|diamond|precious"),
]

SUB_CATEGORY_PATTERNS: Dict[str, List[Tuple[str, str]]] = {
    "electronics": [
        ("mobile_phones", r"phone|smartphone|iphone|android|mobile"),
        ("computers", r"laptop|computer|desktop|pc"),
        ("displays", r"tv|television|monitor|display"),
        ("cameras", r"camera|photo|video"),
        ("audio", r"headphone|speaker|audio|music"),
    ],
    "fashion": [
        ("tops", r"shirt|t-shirt|blouse|top"),
        ("bottoms", r"pants|jeans|trousers|shorts"),
        ("dresses", r"dress|gown|skirt"),
        ("footwear", r"shoe|boot|sneaker|sandal"),
        ("outerwear", r"jacket|coat|sweater|hoodie"),
    ],
    "food": [
        ("fast_food", r"burger|sandwich|fast.*food|mcdonald|kfc|burger.*king"),
        ("pizza", r"pizza|italian"),
        ("beverages", r"drink|beverage|coffee|tea|juice|soda"),
        ("snacks", r"snack|chip|cookie|candy"),
    ],
}

PRODUCT_TYPE_NAMES: Dict[str, str] = {
    "mobile_phones": "Smartphone",
    "computers": "Computer",
    "displays": "Display",
    "cameras": "Camera",
    "audio": "Audio Device",
    "tops": "Top",
    "bottoms": "Pants",
    "dresses": "Dress",
    "footwear": "Shoes",
    "outerwear": "Jacket",
    "fast_food": "Fast Food",
    "pizza": "Pizza",
    "beverages": "Beverage",
    "snacks": "Snack",
    "general_electronics": "Electronic Product",
    "general_fashion": "Fashion Item",
    "general_food": "Food Product",
    "general": "Product",
}

ADJECTIVE_PATTERNS = [
    r"red|blue|green|black|white|yellow|pink|purple|orange|gray|brown",
    r"small|medium|large|big|huge|tiny|mini|xl|xxl",
    r"premium|luxury|professional|pro|deluxe|classic|modern|vintage",
]

BRAND_PATTERN = r"apple|samsung|nike|adidas|mcdonald|coca.*cola|pepsi|sony|lg|hp|dell"

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "electronics": ["technology", "digital", "smart", "electronic", "device", "gadget"],
    "fashion": ["style", "wear", "clothing", "apparel", "fashion", "outfit"],
    "food": ["eat", "taste", "delicious", "fresh", "organic", "natural"],
    "health": ["wellness", "healthy", "natural", "supplement", "care", "medical"],
    "home": ["home", "house", "indoor", "decoration", "furniture", "living"],
    "sports": ["fitness", "active", "sport", "exercise", "outdoor", "athletic"],
    "automotive": ["car", "vehicle", "auto", "drive", "motor", "transport"],
    "books": ["read", "learn", "education", "knowledge", "study", "literature"],
    "toys": ["play", "fun", "game", "entertainment", "child", "kids"],
    "jewelry": ["luxury", "elegant", "precious", "beautiful", "jewelry", "accessory"],
}

# category -> [(name fragments, audience)], checked in order, then the default
TARGET_AUDIENCE_RULES: Dict[str, List[Tuple[Tuple[str, ...], List[str]]]] = {
    "electronics": [
        (("phone", "smartphone"), ["18-45歲數位用戶", "科技愛好者", "商務人士", "學生群體"]),
        (("laptop", "computer"), ["22-50歲專業人士", "學生群體", "創作者", "IT工作者"]),
        (("camera",), ["25-55歲攝影愛好者", "創作者", "旅行愛好者", "專業攝影師"]),
    ],
    "fashion": [
        (("sneaker", "shoe"), ["16-40歲時尚青年", "運動愛好者", "街頭文化愛好者"]),
        (("dress", "gown"), ["20-50歲職業女性", "社交活躍人群", "時尚意識女性"]),
        (("nike", "adidas"), ["16-45歲運動時尚愛好者", "健身人群", "品牌追隨者"]),
    ],
    "food": [
        (("burger", "fast food"), ["16-35歲年輕群體", "忙碌上班族", "學生群體", "便利消費者"]),
        (("pizza",), ["18-45歲社交人群", "家庭聚餐者", "夜間消費者"]),
        (("coffee", "beverage"), ["25-50歲職場人士", "咖啡愛好者", "社交人群"]),
    ],
    "health": [
        (("supplement", "vitamin"), ["30-65歲健康意識人群", "運動愛好者", "中高收入群體"]),
        (("fitness", "gym"), ["20-50歲健身愛好者", "運動員", "健康生活追求者"]),
    ],
    "beauty": [
        (("skincare", "cream"), ["18-60歲護膚關注者", "美容愛好者", "品質追求女性"]),
        (("makeup", "cosmetic"), ["16-50歲化妝愛好者", "時尚女性", "專業化妝師"]),
    ],
    "home": [
        (("furniture",), ["25-60歲家居裝修者", "新婚夫婦", "搬家人群", "生活品質追求者"]),
        (("decoration", "lamp"), ["25-55歲居家美學愛好者", "室內設計愛好者", "品味追求者"]),
    ],
    "sports": [
        (("fitness", "gym"), ["18-50歲健身愛好者", "運動員", "健康生活追求者"]),
        (("outdoor", "bike"), ["20-60歲戶外愛好者", "冒險者", "運動愛好者"]),
    ],
    "automotive": [
        (("car", "vehicle"), ["25-65歲車主", "汽車愛好者", "通勤族", "家庭用車需求者"]),
    ],
}

DEFAULT_TARGET_AUDIENCE: Dict[str, List[str]] = {
    "electronics": ["18-65歲科技消費者", "早期科技採用者", "數位原住民"],
    "fashion": ["18-45歲時尚消費者", "購物愛好者", "品質追求者"],
    "food": ["20-60歲美食愛好者", "家庭主力消費者", "生活品質追求者"],
    "health": ["25-70歲健康關注者", "保健品使用者", "醫療需求者"],
    "beauty": ["18-55歲美容消費者", "自我護理關注者", "品牌忠誠者"],
    "home": ["25-65歲家庭主力消費者", "居家生活愛好者", "品質生活追求者"],
    "sports": ["16-65歲運動參與者", "健康意識人群", "活躍生活方式者"],
    "automotive": ["20-70歲駕駛者", "汽車維護需求者", "交通工具使用者"],
    "books": ["16-70歲知識追求者", "學生群體", "專業人士", "終身學習者"],
    "toys": ["25-45歲父母群體", "禮品購買者", "兒童娛樂關注者"],
    "jewelry": ["25-65歲精品消費者", "禮品購買者", "特殊場合需求者", "收藏愛好者"],
}

GENERIC_TARGET_AUDIENCE = ["25-55歲主流消費者", "網購人群", "品質追求者", "便利購物者"]

KEYWORD_RULES: Dict[str, List[Tuple[Tuple[str, ...], List[str]]]] = {
    "electronics": [
        (("phone", "smartphone"), ["mobile technology", "smartphones", "communication", "digital lifestyle"]),
        (("laptop", "computer"), ["computers", "productivity", "work technology", "digital tools"]),
        (("camera",), ["photography", "cameras", "digital imaging", "creative tools"]),
    ],
    "fashion": [
        (("sneaker", "shoe"), ["footwear", "sneakers", "street fashion", "athletic wear"]),
        (("nike", "adidas"), ["sportswear", "athletic brands", "fitness fashion", "active lifestyle"]),
        (("dress",), ["women fashion", "formal wear", "business attire", "special occasions"]),
    ],
    "food": [
        (("burger", "fast food"), ["fast food", "quick meals", "convenience food", "casual dining"]),
        (("pizza",), ["pizza", "italian food", "delivery food", "social dining"]),
        (("coffee", "beverage"), ["coffee", "beverages", "cafe culture", "morning routine"]),
    ],
    "health": [
        (("supplement", "vitamin"), ["health supplements", "wellness", "nutrition", "vitamins"]),
        (("fitness",), ["fitness", "exercise", "health", "wellness"]),
    ],
    "beauty": [
        (("skincare",), ["skincare", "beauty", "cosmetics", "anti-aging"]),
        (("makeup",), ["makeup", "cosmetics", "beauty products", "personal care"]),
    ],
    "home": [
        (("furniture",), ["home furniture", "interior design", "home decor", "living space"]),
    ],
    "sports": [
        (("fitness",), ["fitness equipment", "exercise", "gym", "health"]),
    ],
}

DEFAULT_KEYWORDS: Dict[str, List[str]] = {
    "electronics": ["technology", "electronics", "gadgets", "innovation"],
    "fashion": ["fashion", "clothing", "style", "apparel"],
    "food": ["food", "dining", "culinary", "gourmet"],
    "health": ["health", "wellness", "medical", "healthcare"],
    "beauty": ["beauty", "cosmetics", "personal care", "self care"],
    "home": ["home", "household", "interior", "home improvement"],
    "sports": ["sports", "athletics", "fitness", "outdoor activities"],
    "automotive": ["automotive", "cars", "vehicles", "transportation"],
    "books": ["books", "education", "reading", "knowledge"],
    "toys": ["toys", "children", "games", "entertainment"],
    "jewelry": ["jewelry", "accessories", "luxury", "gifts"],
}

GENERIC_KEYWORDS = ["products", "shopping", "retail", "consumer goods"]


@dataclass
class Classification:
    """Result of the rule-based classifier. ``confidence`` is on a 0-100 scale."""
    category: str
    product_name: str
    confidence: int


def classify_product(detected_items: Sequence[str], text_content: str) -> Classification:
    """Classify a product from detected object/label names and OCR text."""
    items = " ".join(detected_items).lower()
    combined = f"{items} {text_content.lower()}"

    logger.debug(f"Rule-based classification input: objects={list(detected_items)}, text={text_content!r}")

    result = hierarchical_classification(combined, detected_items)
    if result.confidence > HIGH_CONFIDENCE_THRESHOLD:
        logger.debug(f"High confidence classification: {result.product_name}")
    else:
        result = feature_based_classification(combined, detected_items)
        logger.debug(f"Feature-based classification: {result.product_name}")

    return Classification(
        category=normalize_category(result.category),
        product_name=result.product_name,
        confidence=result.confidence,
    )


def normalize_category(category: str) -> str:
    """Map anything outside the fixed taxonomy (``unknown``, ``general``) onto ``other``."""
    return category if category in PRODUCT_CATEGORIES else "other"


def hierarchical_classification(combined: str, detected_items: Sequence[str]) -> Classification:
    primary_category = get_primary_category(combined)
    sub_category = get_sub_category(combined, primary_category)
    return Classification(
        category=primary_category,
        product_name=get_specific_product(combined, sub_category),
        confidence=calculate_confidence(combined, detected_items, primary_category),
    )


def feature_based_classification(combined: str, detected_items: Sequence[str]) -> Classification:
    """Use the most prominent detected item as the product name."""
    if detected_items:
        category = get_primary_category(combined)
        return Classification(
            category=category if category != "unknown" else "general",
            product_name=detected_items[0],
            confidence=max(40, 70 - len(detected_items) * 5),
        )

    return Classification(category="unknown", product_name="Unknown Product", confidence=30)


def get_primary_category(combined: str) -> str:
    for category, pattern in PRIMARY_CATEGORY_PATTERNS:
        if re.search(pattern, combined):
            return category
    return "unknown"


def get_sub_category(combined: str, primary_category: str) -> str:
    if primary_category not in SUB_CATEGORY_PATTERNS:
        return "general"
    for sub_category, pattern in SUB_CATEGORY_PATTERNS[primary_category]:
        if re.search(pattern, combined):
            return sub_category
    return f"general_{primary_category}"


def get_specific_product(combined: str, sub_category: str) -> str:
    """Brand/model match first, then adjectives plus a generic noun for the sub-category."""
    if "big mac" in combined or "mcdonald" in combined:
        return "Big Mac Burger"

    iphone = re.search(r"iphone.*(\d+)", combined)
    if iphone:
        return f"Apple {iphone.group(0)}"

    if re.search(r"samsung.*galaxy", combined):
        return "Samsung Galaxy Phone"

    brand = re.search(r"nike|adidas|puma|reebok", combined)
    if brand:
        return f"{brand.group(0)} {sub_category}"

    adjectives = extract_adjectives(combined)
    product_type = PRODUCT_TYPE_NAMES.get(sub_category, "Product")
    return f"{' '.join(adjectives)} {product_type}" if adjectives else product_type


def extract_adjectives(combined: str) -> List[str]:
    """One color, one size and one quality adjective at most, in that order."""
    adjectives = []
    for pattern in ADJECTIVE_PATTERNS:
        match = re.search(pattern, combined)
        if match:
            adjectives.append(match.group(0))
    return adjectives


def calculate_confidence(combined: str, detected_items: Sequence[str], category: str) -> int:
    """Base 50, +25 for a known brand, up to +20 for matched features, up to +15 for category keywords; capped at 95."""
    confidence = 50

    if re.search(BRAND_PATTERN, combined):
        confidence += 25

    feature_matches = sum(1 for item in detected_items if item.lower() in combined)
    confidence += min(feature_matches * 5, 20)

    keyword_matches = sum(1 for keyword in CATEGORY_KEYWORDS.get(category, []) if keyword in combined)
    confidence += min(keyword_matches * 3, 15)

    return min(confidence, MAX_CLASSIFIER_CONFIDENCE)


def _lookup(rules: Dict[str, List[Tuple[Tuple[str, ...], List[str]]]], category: str, product_name: str):
    name = product_name.lower()
    for fragments, values in rules.get(category, []):
        if any(fragment in name for fragment in fragments):
            return list(values)
    return None


def generate_target_audience(category: str, product_name: str) -> List[str]:
    matched = _lookup(TARGET_AUDIENCE_RULES, category, product_name)
    if matched is not None:
        return matched
    return list(DEFAULT_TARGET_AUDIENCE.get(category, GENERIC_TARGET_AUDIENCE))


def generate_keywords(category: str, product_name: str, detected_items: Sequence[str]) -> List[str]:
    """Ad-platform-friendly keywords; the first two detected items lead the list."""
    base_keywords = list(detected_items[:2])
    matched = _lookup(KEYWORD_RULES, category, product_name)
    if matched is None:
        matched = list(DEFAULT_KEYWORDS.get(category, GENERIC_KEYWORDS))
    return base_keywords + matched
