"""
Region hierarchy lookup and geography scoring.

The hierarchy is a static table: macro-region -> sub-regions. Territories are
resolved to a region by an explicit per-build mapping first and keyword
auto-mapping second. Scores are then assigned by lookup:

- exact: account region equals rep region
- sibling: different sub-regions of the same macro-region
- parent: one side is the macro-region containing the other
- global: different macro-regions
- unknown: territory or rep region missing or unmappable
"""

import re
from typing import Dict, List, Optional, Tuple

from book_optimizer.models.enums import GeoMatch
from book_optimizer.models.schemas import Account, GeographyParams, Rep


# =============================================================================
# Static Region Tables
# =============================================================================

REGION_HIERARCHY: Dict[str, List[str]] = {
    "AMER": ["North East", "South East", "Central", "West"],
    "EMEA": [
        "UK",
        "DACH",
        "France",
        "Nordics",
        "Southern Europe",
        "Benelux",
        "Middle East",
        "Africa",
    ],
    "APAC": ["ANZ", "Japan", "Southeast Asia", "India", "Greater China", "Korea"],
}

SUB_REGION_PARENT: Dict[str, str] = {
    sub_region: macro
    for macro, sub_regions in REGION_HIERARCHY.items()
    for sub_region in sub_regions
}

# Macro-region keywords. A label naming a macro-region only resolves to a
# sub-region of that macro-region.
MACRO_REGION_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("AMER", ("amer", "americas", "north america")),
    ("EMEA", ("emea", "europe")),
    ("APAC", ("apac", "asia", "asia pacific")),
]

# Sub-region keywords, checked in order after the macro-region scope is known.
SUB_REGION_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Southeast Asia", ("southeast asia", "south east asia", "singapore", "sea")),
    ("North East", ("northeast", "north east", "new england", "new york", "boston")),
    ("South East", ("southeast", "south east", "florida", "atlanta", "carolina")),
    ("Central", ("central", "midwest", "chicago", "texas")),
    ("UK", ("uk", "united kingdom", "britain", "london", "ireland")),
    ("DACH", ("dach", "germany", "austria", "switzerland")),
    ("France", ("france", "french", "paris")),
    ("Nordics", ("nordic", "sweden", "norway", "denmark", "finland")),
    ("Southern Europe", ("southern europe", "spain", "italy", "portugal")),
    ("Benelux", ("benelux", "netherlands", "belgium", "luxembourg")),
    ("Middle East", ("middle east", "uae", "saudi", "israel")),
    ("Africa", ("africa",)),
    ("ANZ", ("anz", "australia", "new zealand")),
    ("Japan", ("japan", "tokyo")),
    ("India", ("india",)),
    ("Greater China", ("china", "hong kong", "taiwan")),
    ("Korea", ("korea",)),
    ("West", ("west", "pacific northwest", "california", "bay area")),
]

_CANONICAL_NAMES: Dict[str, str] = {
    name.lower(): name
    for name in list(REGION_HIERARCHY) + list(SUB_REGION_PARENT)
}


# =============================================================================
# Lookups
# =============================================================================

def _contains_keyword(text: str, keyword: str) -> bool:
    # Whole words only, with an optional plural ("nordics")
    return re.search(rf"\b{re.escape(keyword)}s?\b", text) is not None


def _match_keywords(
    text: str,
    table: List[Tuple[str, Tuple[str, ...]]],
) -> Optional[str]:
    for region, keywords in table:
        if any(_contains_keyword(text, keyword) for keyword in keywords):
            return region
    return None


def auto_map_territory(territory: Optional[str]) -> Optional[str]:
    """
    Resolve a free-text territory label to a known region by keywords.

    Args:
        territory: Territory label as stored on the account.

    Returns:
        Optional[str]: Canonical region or sub-region name, or None.

    Example:
        >>> auto_map_territory("Boston Metro")
        'North East'
        >>> auto_map_territory("EMEA - Germany")
        'DACH'
        >>> auto_map_territory("EMEA Central")
        'EMEA'
    """
    if not territory:
        return None

    normalized = territory.lower().strip()
    if normalized in _CANONICAL_NAMES:
        return _CANONICAL_NAMES[normalized]

    macro = _match_keywords(normalized, MACRO_REGION_KEYWORDS)

    for region, keywords in SUB_REGION_KEYWORDS:
        if macro is not None and SUB_REGION_PARENT[region] != macro:
            continue
        # "South West" style labels are ambiguous; only "west" without "east"
        if region == "West" and "east" in normalized:
            continue
        if any(_contains_keyword(normalized, keyword) for keyword in keywords):
            return region

    return macro


def resolve_region(
    territory: Optional[str],
    territory_mappings: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Map a territory to a region using the explicit table, then keywords.
    """
    if not territory:
        return None

    if territory_mappings:
        mapped = territory_mappings.get(territory)
        if mapped:
            return _CANONICAL_NAMES.get(mapped.lower(), mapped)

    return auto_map_territory(territory)


def normalize_rep_region(region: Optional[str]) -> Optional[str]:
    if not region:
        return None
    return _CANONICAL_NAMES.get(region.lower().strip(), region.strip())


def parent_region(region: Optional[str]) -> Optional[str]:
    """Macro-region containing `region`, or the region itself when it is a macro-region."""
    if not region:
        return None
    if region in REGION_HIERARCHY:
        return region
    return SUB_REGION_PARENT.get(region)


def are_sibling_regions(first: str, second: str) -> bool:
    parent = SUB_REGION_PARENT.get(first)
    return (
        parent is not None
        and first != second
        and SUB_REGION_PARENT.get(second) == parent
    )


def account_region(account: Account, territory_mappings: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Region of an account: mapped territory, else the account's own region label."""
    region = resolve_region(account.territory, territory_mappings)
    if region is None and account.region:
        region = normalize_rep_region(account.region)
    return region


# =============================================================================
# Scoring
# =============================================================================

def classify_geo_match(
    account: Account,
    rep: Rep,
    territory_mappings: Optional[Dict[str, str]] = None,
) -> GeoMatch:
    """
    Classify how an account's territory relates to a rep's region.
    """
    region = account_region(account, territory_mappings)
    rep_region = normalize_rep_region(rep.region)

    if region is None or rep_region is None:
        return GeoMatch.UNKNOWN

    if region == rep_region:
        return GeoMatch.EXACT

    if are_sibling_regions(region, rep_region):
        return GeoMatch.SIBLING

    account_parent = parent_region(region)
    rep_parent = parent_region(rep_region)
    if account_parent is None or rep_parent is None:
        return GeoMatch.UNKNOWN
    if account_parent == rep_parent:
        return GeoMatch.PARENT

    return GeoMatch.GLOBAL


def geo_match_score(match: GeoMatch, params: GeographyParams) -> float:
    return {
        GeoMatch.EXACT: params.exact_match_score,
        GeoMatch.SIBLING: params.sibling_score,
        GeoMatch.PARENT: params.parent_score,
        GeoMatch.GLOBAL: params.global_score,
        GeoMatch.UNKNOWN: params.unknown_territory_score,
    }[match]


def geography_score(
    account: Account,
    rep: Rep,
    params: GeographyParams,
    territory_mappings: Optional[Dict[str, str]] = None,
) -> Tuple[float, GeoMatch]:
    """
    Geography score for one pair, with the match class that produced it.
    """
    match = classify_geo_match(account, rep, territory_mappings)
    return geo_match_score(match, params), match


def same_macro_region(
    account: Account,
    rep: Rep,
    territory_mappings: Optional[Dict[str, str]] = None,
) -> Optional[bool]:
    """
    Whether account and rep share a macro-region; None when either is unknown.
    """
    account_parent = parent_region(account_region(account, territory_mappings))
    rep_parent = parent_region(normalize_rep_region(rep.region))
    if account_parent is None or rep_parent is None:
        return None
    return account_parent == rep_parent
