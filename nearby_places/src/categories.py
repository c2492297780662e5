"""
Place Category System

Curated categories of places worth visiting, plus the denylist of place
types and name patterns that are never worth showing.
"""

import re
from typing import Any, Dict, List, Optional

GOOD_CATEGORIES: Dict[str, Dict[str, Any]] = {
    'food': {
        'label': 'Food & Drink',
        'types': [
            'restaurant', 'cafe', 'bar', 'pub', 'bakery', 'ice_cream',
            'food_court', 'fast_food', 'biergarten', 'wine_bar', 'cocktail_bar',
            'coffee_shop', 'tea_house', 'deli', 'bistro', 'brasserie',
            'fish_and_chips', 'tearoom', 'farm_shop', 'gastropub',
        ],
    },
    'nature': {
        'label': 'Nature & Outdoors',
        'types': [
            'park', 'garden', 'nature_reserve', 'viewpoint', 'beach', 'forest',
            'national_park', 'botanical_garden', 'wildlife_reserve', 'lake',
            'waterfall', 'hill', 'peak', 'cliff', 'cave',
            'common', 'country_park', 'wood', 'heath', 'moor', 'green',
            'recreation_ground', 'bird_hide', 'picnic_site', 'meadow',
        ],
    },
    'culture': {
        'label': 'Arts & Culture',
        'types': [
            'museum', 'gallery', 'theatre', 'arts_centre', 'library',
            'cultural_centre', 'exhibition', 'concert_hall', 'opera_house',
            'community_centre', 'cinema', 'art_gallery',
            'heritage_centre', 'visitor_centre', 'information',
        ],
    },
    'historic': {
        'label': 'History & Heritage',
        'types': [
            'castle', 'monument', 'memorial', 'archaeological_site', 'ruins',
            'heritage', 'historic', 'manor', 'palace', 'abbey', 'cathedral',
            'church', 'chapel', 'tower', 'fort', 'battlefield',
            'stately_home', 'folly', 'priory', 'standing_stone', 'barrow',
            'hill_fort', 'roman', 'saxon', 'medieval', 'tudor', 'victorian',
            'listed_building', 'war_memorial', 'milestone', 'canal_lock',
        ],
    },
    'entertainment': {
        'label': 'Entertainment',
        'types': [
            'cinema', 'bowling_alley', 'arcade', 'escape_game', 'zoo',
            'aquarium', 'theme_park', 'amusement_park', 'miniature_golf',
            'laser_tag', 'trampoline_park', 'go_kart', 'casino',
            'soft_play', 'crazy_golf', 'adventure_playground', 'petting_zoo',
            'farm_park', 'model_railway', 'bingo',
        ],
    },
    'nightlife': {
        'label': 'Nightlife',
        'types': [
            'nightclub', 'club', 'cocktail_bar', 'beer_garden', 'wine_bar',
            'jazz_club', 'comedy_club', 'karaoke', 'lounge', 'speakeasy',
            'music_venue', 'live_music', 'social_club',
        ],
    },
    'active': {
        'label': 'Active & Sports',
        'types': [
            'sports_centre', 'swimming_pool', 'gym', 'climbing', 'golf_course',
            'tennis', 'basketball', 'skate_park', 'ice_rink', 'bowling',
            'yoga', 'dance', 'martial_arts', 'horse_riding',
            'cricket', 'football', 'rugby', 'pitch', 'athletics',
            'walking_route', 'cycle_path', 'disc_golf', 'water_sports',
            'sailing', 'kayak', 'lido', 'paddling_pool',
        ],
    },
    'unique': {
        'label': 'Hidden Gems',
        'types': [
            'artwork', 'fountain', 'observation', 'lighthouse', 'windmill',
            'street_art', 'mural', 'sculpture', 'viewpoint', 'rooftop',
            'secret_garden', 'curiosity', 'unusual',
            'bandstand', 'clock_tower', 'dovecote', 'ice_house', 'oast_house',
            'toll_house', 'water_tower', 'walled_garden', 'maze', 'grotto',
        ],
    },
    'shopping': {
        'label': 'Markets & Shops',
        'types': [
            'marketplace', 'market', 'flea_market', 'farmers_market',
            'antique', 'vintage', 'bookshop', 'record_shop', 'craft_shop',
            'gift_shop', 'boutique',
            'charity_shop', 'car_boot_sale', 'indoor_market', 'arcade_shops',
            'covered_market', 'high_street',
        ],
    },
}

# Substring matches against the place type
BLACKLIST = [
    # Healthcare
    'health', 'clinic', 'hospital', 'pharmacy', 'dentist', 'doctor', 'optician',
    'veterinary', 'medical', 'nursing_home', 'hospice',
    # Financial
    'bank', 'atm', 'post_office', 'money_transfer', 'bureau_de_change',
    # Government & emergency
    'police', 'fire_station', 'courthouse', 'government', 'townhall',
    'embassy', 'consulate', 'prison', 'military',
    # Education
    'school', 'college', 'kindergarten', 'university', 'driving_school',
    # Transport & automotive
    'fuel', 'car_wash', 'car_repair', 'parking', 'garage', 'car_rental',
    'bus_station', 'taxi', 'car_sharing', 'charging_station',
    # Utilities
    'toilet', 'waste_basket', 'recycling', 'waste_disposal',
    'telephone', 'post_box', 'bench', 'shelter',
    # Political & religious (historic ones come through the historic keys)
    'political', 'place_of_worship', 'monastery', 'convent',
    # Industrial & commercial
    'industrial', 'warehouse', 'storage', 'factory', 'office',
    # Generic retail
    'supermarket', 'convenience', 'department_store', 'mall',
    'hardware', 'electronics', 'mobile_phone', 'computer',
    # Services
    'hairdresser', 'beauty', 'laundry', 'dry_cleaning', 'tailor',
    'locksmith', 'copyshop', 'estate_agent', 'insurance', 'lawyer',
    # Clubs and halls
    'community_hall', 'social_club', 'conservative_club', 'working_mens_club',
    'social_centre', 'youth_club',
]

# Types invented by non-OSM sources
SOURCE_TYPE_CATEGORIES: Dict[str, str] = {
    'notable_place': 'unique',
}

BORING_NAME_PATTERNS = [re.compile(p, re.I) for p in [
    r'health\s*cent(er|re)',
    r'medical',
    r'surgery',
    r'dental',
    r'pharmacy',
    r'car\s*park',
    r'parking',
    r'petrol',
    r'garage',
    r'toilet',
    r'wc\b',
    r'post\s*office',
    r'bank\b',
    r'atm\b',
    r'school',
    r'college\b',
    r'council',
    r'office',
    r'industrial',
    r'warehouse',
    r'depot',
    r'conservative\s*club',
    r'working\s*men',
    r'social\s*club',
    r'community\s*cent(er|re)',
    r'sports\s*direct',
    r'tesco',
    r'sainsbury',
    r'asda',
    r'lidl',
    r'aldi',
    r'morrisons',
    r'co-?op\b',
    r'iceland\b',
    r'argos',
    r'halfords',
    r'currys',
]]


def get_category_for_type(place_type: Optional[str]) -> Optional[str]:
    """Return the category key a place type belongs to, or None.

    Category keys themselves resolve to their own category, since curated
    sources report places by category rather than by OSM type. Notable
    (Wikipedia) places count as hidden gems.
    """
    if not place_type:
        return None
    for key, category in GOOD_CATEGORIES.items():
        if place_type in category['types']:
            return key
    if place_type in GOOD_CATEGORIES:
        return place_type
    return SOURCE_TYPE_CATEGORIES.get(place_type)


def is_blacklisted(place_type: Optional[str]) -> bool:
    if not place_type:
        return False
    lowered = place_type.lower()
    return any(entry in lowered for entry in BLACKLIST)


def has_boring_name(name: Optional[str]) -> bool:
    if not name:
        return False
    return any(pattern.search(name) for pattern in BORING_NAME_PATTERNS)


def get_types_for_category(category_key: str) -> List[str]:
    category = GOOD_CATEGORIES.get(category_key)
    return list(category['types']) if category else []


def get_all_good_types() -> List[str]:
    types = []
    for category in GOOD_CATEGORIES.values():
        types.extend(category['types'])
    return types
