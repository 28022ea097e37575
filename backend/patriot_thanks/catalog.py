"""Fixed vocabularies shared by search, chains and incentives."""

from __future__ import annotations

BUSINESS_TYPE_LABELS: dict[str, str] = {
    "AUTO": "Automotive",
    "BEAU": "Beauty",
    "BOOK": "Bookstore",
    "CLTH": "Clothing",
    "CONV": "Convenience Store/Gas Station",
    "DEPT": "Department Store",
    "ELEC": "Electronics",
    "ENTR": "Entertainment",
    "FURN": "Furniture",
    "FUEL": "Fuel Station/Truck Stop",
    "GIFT": "Gift Shop",
    "GROC": "Grocery",
    "HARDW": "Hardware",
    "HEAL": "Health",
    "HOTEL": "Hotel/Motel",
    "JEWL": "Jewelry",
    "OTHER": "Other",
    "RX": "Pharmacy",
    "REST": "Restaurant",
    "RETAIL": "Retail",
    "SERV": "Service",
    "SPEC": "Specialty",
    "SPRT": "Sporting Goods",
    "TECH": "Technology",
    "TOYS": "Toys",
}

INCENTIVE_CATEGORIES: tuple[str, ...] = ("VT", "AD", "FR", "SP", "OT", "NA", "NC")
CHAIN_INCENTIVE_CATEGORIES: tuple[str, ...] = INCENTIVE_CATEGORIES + ("WS", "MR")
NOT_AVAILABLE_CATEGORY = "NA"

INCENTIVE_CATEGORY_LABELS: dict[str, str] = {
    "VT": "Veteran",
    "AD": "Active Duty",
    "FR": "First Responder",
    "SP": "Spouse",
    "OT": "Other",
    "NA": "Not Available",
    "NC": "No Category",
    "WS": "Wounded Service Member",
    "MR": "Military Retiree",
}

DISCOUNT_TYPES: tuple[str, ...] = ("percentage", "dollar")

# Service codes that must name a military branch at registration.
MILITARY_BRANCH_REQUIRED: frozenset[str] = frozenset({"VT", "AD", "FR", "SP", "VBO"})

VETERAN_VERIFICATION_STATUSES: tuple[str, ...] = (
    "self_attested",
    "pending_verification",
    "verified",
    "certified",
    "denied",
)

# Single search keywords that also mean "this category".
KEYWORD_CATEGORIES: dict[str, str] = {
    "restaurant": "REST",
    "restaurants": "REST",
    "food": "REST",
    "dining": "REST",
    "grocery": "GROC",
    "groceries": "GROC",
    "supermarket": "GROC",
    "gas": "FUEL",
    "fuel": "FUEL",
    "gas station": "FUEL",
    "hardware": "HARDW",
    "pharmacy": "RX",
    "drugstore": "RX",
    "clothing": "CLTH",
    "clothes": "CLTH",
    "apparel": "CLTH",
    "electronics": "ELEC",
    "furniture": "FURN",
    "hotel": "HOTEL",
    "motel": "HOTEL",
    "automotive": "AUTO",
    "auto": "AUTO",
    "beauty": "BEAU",
    "salon": "BEAU",
    "books": "BOOK",
    "bookstore": "BOOK",
    "department store": "DEPT",
    "entertainment": "ENTR",
    "jewelry": "JEWL",
    "sporting goods": "SPRT",
    "sports": "SPRT",
    "toys": "TOYS",
    "gifts": "GIFT",
    "convenience": "CONV",
    "technology": "TECH",
    "health": "HEAL",
}

# Text search term used against the places directory for a category code.
CATEGORY_SEARCH_TERMS: dict[str, str] = {
    "AUTO": "auto repair",
    "BEAU": "beauty salon",
    "BOOK": "book store",
    "CLTH": "clothing store",
    "CONV": "convenience store",
    "DEPT": "department store",
    "ELEC": "electronics store",
    "ENTR": "entertainment",
    "FURN": "furniture store",
    "FUEL": "gas station",
    "GIFT": "gift shop",
    "GROC": "grocery store",
    "HARDW": "hardware store",
    "HEAL": "health",
    "HOTEL": "hotel",
    "JEWL": "jewelry store",
    "RX": "pharmacy",
    "REST": "restaurant",
    "RETAIL": "store",
    "SERV": "service",
    "SPRT": "sporting goods store",
    "TECH": "technology store",
    "TOYS": "toy store",
}

# Place types for the default "near me" search.
DISCOUNT_FRIENDLY_PLACE_TYPES: tuple[str, ...] = (
    "restaurant",
    "grocery_store",
    "department_store",
    "clothing_store",
    "electronics_store",
    "gas_station",
    "pharmacy",
    "hardware_store",
    "furniture_store",
    "sporting_goods_store",
    "car_repair",
    "beauty_salon",
    "gym",
)

PLACE_TYPE_CATEGORIES: dict[str, str] = {
    "restaurant": "REST",
    "cafe": "REST",
    "bakery": "REST",
    "bar": "REST",
    "meal_takeaway": "REST",
    "meal_delivery": "REST",
    "fast_food_restaurant": "REST",
    "grocery_store": "GROC",
    "supermarket": "GROC",
    "department_store": "DEPT",
    "clothing_store": "CLTH",
    "shoe_store": "CLTH",
    "electronics_store": "ELEC",
    "gas_station": "FUEL",
    "pharmacy": "RX",
    "drugstore": "RX",
    "hardware_store": "HARDW",
    "home_improvement_store": "HARDW",
    "furniture_store": "FURN",
    "home_goods_store": "FURN",
    "sporting_goods_store": "SPRT",
    "car_repair": "AUTO",
    "car_dealer": "AUTO",
    "car_wash": "AUTO",
    "beauty_salon": "BEAU",
    "hair_care": "BEAU",
    "spa": "BEAU",
    "gym": "HEAL",
    "doctor": "HEAL",
    "dentist": "HEAL",
    "lodging": "HOTEL",
    "hotel": "HOTEL",
    "book_store": "BOOK",
    "jewelry_store": "JEWL",
    "convenience_store": "CONV",
    "movie_theater": "ENTR",
    "amusement_park": "ENTR",
    "bowling_alley": "ENTR",
    "store": "RETAIL",
}


def business_type_label(code: str | None) -> str:
    if not code:
        return "Unknown"
    return BUSINESS_TYPE_LABELS.get(code.upper(), code)


def category_for_place_types(types: list[str]) -> str:
    for place_type in types:
        category = PLACE_TYPE_CATEGORIES.get(place_type)
        if category is not None:
            return category
    return "OTHER"


def normalize_categories(values: list[str] | None, allowed: tuple[str, ...]) -> list[str]:
    normalized: list[str] = []
    for value in values or []:
        if not isinstance(value, str):
            continue
        code = value.strip().upper()
        if code and code in allowed and code not in normalized:
            normalized.append(code)
    return normalized
