from __future__ import annotations
import logging
import re
from typing import Any, Optional, Tuple

from adcommand_kit.integrations.facebook.exceptions import FacebookValidationError

logger = logging.getLogger("facebook.utils")

PLACEHOLDER_MARKERS = ("ACTUAL_", "CAMPAIGN_ID", "ADSET_ID", "_FROM_", "CANNOT_", "PENDING", "PLACEHOLDER")
FACEBOOK_MACRO_RE = re.compile(r"\{\{[^}]+\}\}")
URL_IN_TEXT_RE = re.compile(r"https?://[^\s]+")


def validate_ad_account_id(ad_account_id: str) -> str:
    if not ad_account_id:
        raise FacebookValidationError("ad_account_id", "is required")
    ad_account_id = str(ad_account_id).strip()
    if not ad_account_id:
        raise FacebookValidationError("ad_account_id", "cannot be empty")
    if not ad_account_id.startswith("act_"):
        return f"act_{ad_account_id}"
    return ad_account_id


def format_budget(value: Any) -> str:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return "an assigned"
    if numeric <= 0:
        return "an assigned"
    dollars = numeric / 100
    if dollars == int(dollars):
        return f"${int(dollars)}/day"
    return f"${dollars:.2f}/day"


def parse_tracking_url(full_url: Optional[str]) -> Tuple[str, str]:
    """
    Split "https://site/page?utm_source=fb" into ("https://site/page", "utm_source=fb").
    """
    if not full_url or not isinstance(full_url, str):
        return "", ""
    trimmed = full_url.strip()
    base, sep, params = trimmed.partition("?")
    if not sep:
        return trimmed, ""
    return base, params


def contains_facebook_macros(url: Optional[str]) -> bool:
    return bool(url) and FACEBOOK_MACRO_RE.search(url) is not None


def find_url_in_text(text: str) -> Optional[str]:
    m = URL_IN_TEXT_RE.search(text or "")
    if not m:
        return None
    return m.group(0).rstrip(".,;:!?)\"'")


def is_placeholder_id(value: Any) -> bool:
    """
    Models invent ids like "__campaign_id__" or "ACTUAL_ADSET_ID_FROM_STEP_2" before
    the real one exists. Platform ids are always all digits.
    """
    if value is None:
        return True
    s = str(value).strip()
    if not s:
        return True
    if s.startswith("__") or s.endswith("__"):
        return True
    if any(marker in s for marker in PLACEHOLDER_MARKERS):
        return True
    return not s.isdigit()


def humanize_tool_name(tool_name: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in tool_name.split("_") if part)
