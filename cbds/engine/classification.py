"""Commodity classification - HS code checks, VAT class and duty resolution."""

import re

from pydantic import BaseModel

from cbds.schemas.rates import CountryRates, VatClass
from cbds.schemas.tax import TaxItem

_NON_DIGIT = re.compile(r"[\s.\-]")

# chapters that do not exist in the harmonized system
_RESERVED_CHAPTERS = {"00", "77", "98", "99"}

FOOD_CHAPTERS = {f"{n:02d}" for n in range(2, 22)}

VAT_CLASS_BY_CHAPTER: dict[str, VatClass] = {
    **{ch: "reduced" for ch in FOOD_CHAPTERS},
    "30": "reduced",
    "49": "reduced",
}

# country-specific departures from the chapter defaults
VAT_CLASS_OVERRIDES: dict[str, dict[str, VatClass]] = {
    "GB": {**{ch: "zero" for ch in FOOD_CHAPTERS}, "49": "zero"},
    "IE": {"49": "zero"},
}

VAT_CLASS_BY_CATEGORY: dict[str, VatClass] = {
    "books": "reduced",
    "food": "reduced",
    "medicine": "reduced",
    "pharmaceuticals": "reduced",
    "children_clothing": "reduced",
}

DUTY_BY_CHAPTER = {
    "17": 0.17,
    "39": 0.065,
    "61": 0.12,
    "62": 0.12,
    "63": 0.12,
    "64": 0.17,
    "65": 0.12,
    "71": 0.025,
}


class HSSuggestion(BaseModel):
    hs_code: str
    description: str
    confidence: float


class ItemClassification(BaseModel):
    hs_code: str | None
    chapter: str | None
    vat_class: VatClass
    duty_rate: float
    suggested: bool = False


# (hs_code, description, keywords)
PRODUCT_CATALOG: list[tuple[str, str, tuple[str, ...]]] = [
    ("8517120000", "Mobile phones", ("phone", "smartphone", "mobile", "iphone", "android")),
    ("8471300000", "Portable computers", ("laptop", "notebook", "macbook", "computer")),
    ("8518300000", "Headphones and earphones", ("headphone", "headphones", "earphone", "earbuds", "headset", "airpods")),
    ("6109100000", "Cotton T-shirts", ("t-shirt", "tshirt", "tee")),
    ("6203420000", "Cotton trousers", ("pants", "trousers", "jeans")),
    ("6402990000", "Footwear", ("shoes", "sneakers", "boots")),
    ("6505000000", "Hats and caps", ("hat", "cap", "beanie")),
    ("9403300000", "Wooden office furniture", ("desk", "chair")),
    ("6302210000", "Cotton bed linen", ("bed sheet", "duvet", "pillowcase")),
    ("3924100000", "Plastic tableware", ("tableware", "plate", "bowl")),
    ("3304200000", "Eye make-up", ("eyeshadow", "mascara", "eyeliner")),
    ("3401110000", "Soap", ("soap",)),
    ("3305100000", "Shampoo", ("shampoo",)),
    ("9503008900", "Toys", ("toy", "puzzle", "lego")),
    ("9506910000", "Fitness equipment", ("fitness", "dumbbell", "treadmill")),
    ("4901990000", "Printed books", ("book", "novel", "textbook")),
    ("9608100000", "Ballpoint pens", ("pen", "ballpoint")),
    ("1704900000", "Sugar confectionery", ("candy", "sweets")),
    ("2101110000", "Coffee extracts", ("coffee",)),
    ("7113191000", "Silver jewellery", ("silver jewelry", "silver necklace")),
    ("7117190000", "Imitation jewellery", ("jewelry", "necklace", "bracelet")),
]


def normalize_hs_code(hs_code: str | None) -> str | None:
    if not hs_code:
        return None
    return _NON_DIGIT.sub("", hs_code)


def is_valid_hs_code(hs_code: str | None) -> bool:
    """4 to 10 digits with an existing chapter."""
    code = normalize_hs_code(hs_code)
    if not code or not code.isdigit() or not 4 <= len(code) <= 10:
        return False
    return code[:2] not in _RESERVED_CHAPTERS


def suggest_hs_code(name: str, category: str | None = None) -> HSSuggestion | None:
    """Keyword lookup over the product catalog. Longer keyword matches win."""
    text = f" {name} {category or ''} ".lower()
    best: tuple[int, HSSuggestion] | None = None
    for hs_code, description, keywords in PRODUCT_CATALOG:
        for kw in keywords:
            if re.search(rf"\b{re.escape(kw)}\b", text):
                if best is None or len(kw) > best[0]:
                    best = (len(kw), HSSuggestion(hs_code=hs_code, description=description, confidence=0.95))
    return best[1] if best else None


def vat_class_for(chapter: str | None, category: str | None, country_code: str) -> VatClass:
    if chapter:
        override = VAT_CLASS_OVERRIDES.get(country_code, {}).get(chapter)
        if override:
            return override
        if chapter in VAT_CLASS_BY_CHAPTER:
            return VAT_CLASS_BY_CHAPTER[chapter]
    if category:
        return VAT_CLASS_BY_CATEGORY.get(category.lower(), "standard")
    return "standard"


def classify_item(item: TaxItem, rates: CountryRates) -> ItemClassification:
    code = normalize_hs_code(item.hs_code) if is_valid_hs_code(item.hs_code) else None
    suggested = False
    if code is None:
        suggestion = suggest_hs_code(item.name, item.category)
        if suggestion is not None:
            code, suggested = suggestion.hs_code, True
    chapter = code[:2] if code else None
    duty = rates.duty_rate
    if duty and chapter in DUTY_BY_CHAPTER:
        duty = DUTY_BY_CHAPTER[chapter]
    return ItemClassification(
        hs_code=code,
        chapter=chapter,
        vat_class=vat_class_for(chapter, item.category, rates.country_code),
        duty_rate=duty,
        suggested=suggested,
    )
