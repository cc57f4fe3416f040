"""
Deterministic targeting constraints.

The command text is the source of truth for who gets targeted. Facts parsed here
are written over whatever the model put into a create_adset call, and when the
command names no gender any single-gender restriction the model invented is
dropped. Nationality words never imply a gender.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from adcommand_kit.integrations.facebook.models import GeoLocations, TargetingArgs

logger = logging.getLogger("execution.constraints")


@dataclass
class TargetingConstraints:
    language: Optional[str] = None
    locale_codes: Optional[List[str]] = None
    countries: Optional[List[str]] = None
    gender: Optional[str] = None   # "male", "female", "all" or None for no constraint
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    interests: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return all(v is None for v in (self.language, self.countries, self.gender, self.age_min, self.age_max, self.interests))


LANGUAGE_CODES: Dict[str, str] = {
    "romanian": "ro",
    "english": "en",
    "german": "de",
    "french": "fr",
    "spanish": "es",
    "italian": "it",
    "dutch": "nl",
    "polish": "pl",
    "portuguese": "pt",
    "greek": "el",
    "hungarian": "hu",
    "czech": "cs",
    "turkish": "tr",
    "russian": "ru",
    "arabic": "ar",
    "swedish": "sv",
    "danish": "da",
    "finnish": "fi",
    "norwegian": "nb",
    "bulgarian": "bg",
    "croatian": "hr",
    "slovak": "sk",
    "slovenian": "sl",
}

LANGUAGE_PATTERNS: List[Tuple[str, Pattern]] = [
    (name, re.compile(rf"\b{name}\s+language\b|\bin\s+{name}\b|\bon\s+{name}\b", re.IGNORECASE))
    for name in LANGUAGE_CODES
]

# (code, case-insensitive pattern, case-sensitive pattern for bare abbreviations)
COUNTRY_PATTERNS: List[Tuple[str, Pattern, Optional[Pattern]]] = [
    ("RO", re.compile(r"\bromanians?\b|\bromania\b", re.I), None),
    ("DE", re.compile(r"\bgermans?\b|\bgermany\b", re.I), None),
    ("FR", re.compile(r"\bfrench\s+(?:people|users|audience)\b|\bfrance\b", re.I), None),
    ("ES", re.compile(r"\bspaniards?\b|\bspain\b|\bspanish\s+(?:people|users|audience)\b", re.I), None),
    ("IT", re.compile(r"\bitalians?\b|\bitaly\b", re.I), None),
    ("NL", re.compile(r"\bdutch\s+(?:people|users|audience)\b|\bnetherlands\b|\bholland\b", re.I), None),
    ("PL", re.compile(r"\bpoles\b|\bpolish\s+(?:people|users|audience)\b|\bpoland\b", re.I), None),
    ("PT", re.compile(r"\bportuguese\s+(?:people|users|audience)\b|\bportugal\b", re.I), None),
    ("GR", re.compile(r"\bgreeks?\b|\bgreece\b", re.I), None),
    ("HU", re.compile(r"\bhungarians?\b|\bhungary\b", re.I), None),
    ("CZ", re.compile(r"\bczechs?\b|\bczechia\b|\bczech\s+republic\b", re.I), None),
    ("TR", re.compile(r"\bturks?\b|\bturkish\s+(?:people|users|audience)\b|\bturkey\b", re.I), None),
    ("US", re.compile(r"\bamericans?\b|\bunited\s+states\b|\b(?:us|usa)\s+(?:users?|audience|people)\b", re.I), re.compile(r"\bUSA?\b")),
    ("GB", re.compile(r"\bbritish\b|\bunited\s+kingdom\b|\buk\s+(?:users?|audience|people)\b", re.I), re.compile(r"\bUK\b")),
    ("BG", re.compile(r"\bbulgarians?\b|\bbulgaria\b", re.I), None),
    ("HR", re.compile(r"\bcroatians?\b|\bcroatia\b", re.I), None),
    ("SK", re.compile(r"\bslovaks?\b|\bslovakia\b", re.I), None),
    ("SI", re.compile(r"\bslovenians?\b|\bslovenia\b", re.I), None),
    ("SE", re.compile(r"\bswedes?\b|\bsweden\b|\bswedish\s+(?:people|users|audience)\b", re.I), None),
    ("DK", re.compile(r"\bdanes?\b|\bdenmark\b|\bdanish\s+(?:people|users|audience)\b", re.I), None),
    ("FI", re.compile(r"\bfinns?\b|\bfinland\b|\bfinnish\s+(?:people|users|audience)\b", re.I), None),
    ("NO", re.compile(r"\bnorwegians?\b|\bnorway\b", re.I), None),
    ("AT", re.compile(r"\baustrians?\b|\baustria\b", re.I), None),
    ("BE", re.compile(r"\bbelgians?\b|\bbelgium\b", re.I), None),
    ("IE", re.compile(r"\birish\b|\bireland\b", re.I), None),
]

# Countries where campaign bundles need compliance fields, checked before anything is created
EU_COUNTRY_KEYWORDS: Dict[str, str] = {
    "romania": "RO", "poland": "PL", "germany": "DE", "france": "FR", "italy": "IT",
    "spain": "ES", "netherlands": "NL", "belgium": "BE", "austria": "AT", "sweden": "SE",
    "denmark": "DK", "finland": "FI", "czechia": "CZ", "czech republic": "CZ", "hungary": "HU",
    "portugal": "PT", "greece": "GR", "ireland": "IE", "slovakia": "SK", "slovenia": "SI",
    "croatia": "HR", "bulgaria": "BG", "lithuania": "LT", "latvia": "LV", "estonia": "EE",
    "luxembourg": "LU", "cyprus": "CY", "malta": "MT", "norway": "NO",
}

GENDER_MALE_RE = re.compile(r"\b(?:men|males?|male\s+audience)\b", re.I)
GENDER_FEMALE_RE = re.compile(r"\b(?:women|females?|female\s+audience)\b", re.I)

AGE_PATTERNS = [
    re.compile(r"\baged?\s+(\d{1,2})\s*(?:-|–|to)\s*(\d{1,2})\b", re.I),
    re.compile(r"\bages?\s+(\d{1,2})\s*(?:-|–|to)\s*(\d{1,2})\b", re.I),
    re.compile(r"\bbetween\s+(\d{1,2})\s+and\s+(\d{1,2})\b", re.I),
    re.compile(r"\b(\d{1,2})\s*(?:-|–)\s*(\d{1,2})\s*(?:years?\s*old|y\.?o\.?)", re.I),
]
AGE_LIMITS = (13, 65)

INTEREST_RE = re.compile(
    r"\binterested\s+in\s+(.+?)(?=\s+(?:with|aged?|ages?|for|on|between)\b|[.;]|$)",
    re.I,
)
INTEREST_SPLIT_RE = re.compile(r"\s*(?:,|\band\b)\s*", re.I)

AD_COUNT_RE = re.compile(r"\b(\d+)\s*ads?\b", re.I)

GENDER_CODES = {"male": [1], "female": [2], "all": [1, 2]}


def parse_targeting_constraints(command: str) -> TargetingConstraints:
    c = TargetingConstraints()
    text = command or ""

    for name, pattern in LANGUAGE_PATTERNS:
        if pattern.search(text):
            c.language = name
            c.locale_codes = [LANGUAGE_CODES[name]]
            break

    countries: List[str] = []
    for code, pattern, exact in COUNTRY_PATTERNS:
        if pattern.search(text) or (exact is not None and exact.search(text)):
            if code not in countries:
                countries.append(code)
    if countries:
        c.countries = countries

    has_male = GENDER_MALE_RE.search(text) is not None
    has_female = GENDER_FEMALE_RE.search(text) is not None
    if has_male and has_female:
        c.gender = "all"
    elif has_male:
        c.gender = "male"
    elif has_female:
        c.gender = "female"

    for pattern in AGE_PATTERNS:
        m = pattern.search(text)
        if m:
            lo, hi = int(m.group(1)), int(m.group(2))
            if AGE_LIMITS[0] <= lo <= AGE_LIMITS[1] and AGE_LIMITS[0] <= hi <= AGE_LIMITS[1] and lo <= hi:
                c.age_min, c.age_max = lo, hi
            break

    m = INTEREST_RE.search(text)
    if m:
        interests = [s.strip() for s in INTEREST_SPLIT_RE.split(m.group(1)) if s.strip()]
        if interests:
            c.interests = interests

    return c


def parse_requested_ad_count(command: str) -> int:
    m = AD_COUNT_RE.search(command or "")
    if not m:
        return 1
    return max(1, int(m.group(1)))


def infer_eu_countries(command: str) -> List[str]:
    lowered = (command or "").lower()
    result: List[str] = []
    for keyword, code in EU_COUNTRY_KEYWORDS.items():
        if keyword in lowered and code not in result:
            result.append(code)
    return result


def _interest_name(interest) -> str:
    if isinstance(interest, dict):
        return str(interest.get("name") or "").strip().lower()
    return str(interest).strip().lower()


def enforce_targeting_constraints(targeting: TargetingArgs, constraints: TargetingConstraints) -> List[str]:
    """
    Overwrite targeting fields that disagree with the parsed constraints, in place.
    Returns human-readable descriptions of every change made.
    """
    fixes: List[str] = []

    if constraints.locale_codes:
        current = targeting.locales or []
        lowered = {str(loc).strip().lower() for loc in current if isinstance(loc, str)}
        if not current or not all(code in lowered for code in constraints.locale_codes):
            targeting.locales = list(constraints.locale_codes)
            fixes.append(f"Enforced {constraints.language} language targeting (will be resolved by Meta API).")

    if constraints.gender is not None:
        expected = GENDER_CODES[constraints.gender]
        if sorted(targeting.genders or []) != expected:
            targeting.genders = list(expected)
            fixes.append(f"Enforced gender targeting: {constraints.gender}.")
    elif targeting.genders and len(targeting.genders) == 1:
        targeting.genders = None
        fixes.append("Removed AI-hallucinated gender restriction (user did not specify gender).")

    if constraints.countries:
        current_countries = targeting.geo_locations.countries if targeting.geo_locations else None
        if set(current_countries or []) != set(constraints.countries):
            if targeting.geo_locations is None:
                targeting.geo_locations = GeoLocations()
            targeting.geo_locations.countries = list(constraints.countries)
            fixes.append(f"Enforced country targeting: [{', '.join(constraints.countries)}].")

    if constraints.age_min is not None and targeting.age_min != constraints.age_min:
        targeting.age_min = constraints.age_min
        fixes.append(f"Enforced minimum age: {constraints.age_min}.")
    if constraints.age_max is not None and targeting.age_max != constraints.age_max:
        targeting.age_max = constraints.age_max
        fixes.append(f"Enforced maximum age: {constraints.age_max}.")

    if constraints.interests:
        have = {_interest_name(i) for i in (targeting.interests or [])}
        missing = [i for i in constraints.interests if i.lower() not in have]
        if missing:
            targeting.interests = list(targeting.interests or []) + missing
            fixes.append(f"Added interests from the command: {', '.join(missing)}.")

    if fixes:
        logger.debug("constraint fixes: %s", "; ".join(fixes))
    return fixes


def normalize_locales(raw_locales) -> List:
    """
    De-duplicate locale values: numeric strings become ints, names are lower-cased,
    blanks are dropped. The gateway resolves names and ISO codes itself.
    """
    result: List = []
    seen = set()
    for loc in raw_locales or []:
        if isinstance(loc, bool):
            continue
        if isinstance(loc, int):
            key = str(loc)
            value = loc
        elif isinstance(loc, str):
            trimmed = loc.strip()
            if not trimmed:
                continue
            if trimmed.isdigit():
                key, value = trimmed, int(trimmed)
            else:
                key = value = trimmed.lower()
        else:
            continue
        if key not in seen:
            seen.add(key)
            result.append(value)
    return result
