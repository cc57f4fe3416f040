from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from .exceptions import FacebookValidationError
class CampaignObjective(str, Enum):
    TRAFFIC = "OUTCOME_TRAFFIC"
    SALES = "OUTCOME_SALES"
    ENGAGEMENT = "OUTCOME_ENGAGEMENT"
    AWARENESS = "OUTCOME_AWARENESS"
    LEADS = "OUTCOME_LEADS"
    APP_PROMOTION = "OUTCOME_APP_PROMOTION"
class CampaignStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"
class OptimizationGoal(str, Enum):
    LINK_CLICKS = "LINK_CLICKS"
    LANDING_PAGE_VIEWS = "LANDING_PAGE_VIEWS"
    IMPRESSIONS = "IMPRESSIONS"
    REACH = "REACH"
    CONVERSIONS = "CONVERSIONS"
    LEAD_GENERATION = "LEAD_GENERATION"
    POST_ENGAGEMENT = "POST_ENGAGEMENT"
    VIDEO_VIEWS = "VIDEO_VIEWS"
    THRUPLAY = "THRUPLAY"
class BillingEvent(str, Enum):
    IMPRESSIONS = "IMPRESSIONS"
    LINK_CLICKS = "LINK_CLICKS"
    THRUPLAY = "THRUPLAY"
GENDER_CODES = {"male": 1, "men": 1, "m": 1, "female": 2, "women": 2, "f": 2}
class ToolArgs(BaseModel):
    """Base for every tool's arguments: snake_case in Python, camelCase on the wire, unknown keys kept."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")
    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
def _coerce_cents(v):
    if v is None or v == "":
        return None
    if isinstance(v, str):
        v = v.strip().replace(",", "")
    return int(float(v))
class GeoLocations(ToolArgs):
    countries: Optional[List[str]] = None
    @field_validator("countries", mode="before")
    @classmethod
    def upper_countries(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = [v]
        return [str(c).strip().upper() for c in v if str(c).strip()]
class TargetingArgs(ToolArgs):
    geo_locations: Optional[GeoLocations] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    genders: Optional[List[int]] = None
    interests: Optional[List[Union[str, Dict[str, Any]]]] = None
    locales: Optional[List[Union[int, str]]] = None
    targeting_automation: Optional[Dict[str, Any]] = None
    advantage_audience: Optional[Any] = Field(default=None, alias="advantage_audience")
    @field_validator("genders", mode="before")
    @classmethod
    def coerce_genders(cls, v):
        if v is None:
            return None
        if not isinstance(v, list):
            v = [v]
        result = []
        for g in v:
            if isinstance(g, str):
                key = g.strip().lower()
                if key in GENDER_CODES:
                    g = GENDER_CODES[key]
                elif key.isdigit():
                    g = int(key)
                else:
                    raise ValueError(f"unknown gender {g!r}")
            if g not in (1, 2):
                raise ValueError(f"gender must be 1 or 2, got {g!r}")
            if g not in result:
                result.append(g)
        return result
    @field_validator("age_min", "age_max", mode="before")
    @classmethod
    def coerce_age(cls, v):
        if v is None or v == "":
            return None
        return int(v)
class GetCampaignsArgs(ToolArgs):
    account_id: Optional[str] = None
    status: Optional[List[str]] = None
class UpdateCampaignArgs(ToolArgs):
    campaign_id: str = ""
    status: Optional[str] = None
    name: Optional[str] = None
    daily_budget: Optional[int] = None
    @field_validator("daily_budget", mode="before")
    @classmethod
    def coerce_cents(cls, v):
        return _coerce_cents(v)
class CreateCampaignArgs(ToolArgs):
    account_id: str = ""
    name: str = ""
    objective: str = CampaignObjective.TRAFFIC.value
    daily_budget: Optional[int] = None
    lifetime_budget: Optional[int] = None
    status: str = CampaignStatus.PAUSED.value
    @field_validator("daily_budget", "lifetime_budget", mode="before")
    @classmethod
    def coerce_cents(cls, v):
        return _coerce_cents(v)
class CreateAdSetArgs(ToolArgs):
    account_id: str = ""
    campaign_id: Optional[str] = None
    name: str = ""
    optimization_goal: Optional[str] = None
    billing_event: Optional[str] = None
    bid_amount: Optional[int] = None
    daily_budget: Optional[int] = None
    lifetime_budget: Optional[int] = None
    status: str = CampaignStatus.PAUSED.value
    promoted_object: Optional[Dict[str, Any]] = None
    targeting: TargetingArgs = Field(default_factory=TargetingArgs)
    @field_validator("daily_budget", "lifetime_budget", "bid_amount", mode="before")
    @classmethod
    def coerce_cents(cls, v):
        return _coerce_cents(v)
    @field_validator("campaign_id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return None if v is None else str(v).strip()
class CreativeArgs(ToolArgs):
    page_id: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    link_url: Optional[str] = None
    url_parameters: Optional[str] = None
    call_to_action: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    display_link: Optional[str] = None
class CreateAdArgs(ToolArgs):
    account_id: str = ""
    ad_set_id: Optional[str] = None
    name: str = ""
    status: str = CampaignStatus.PAUSED.value
    creative: Optional[CreativeArgs] = None
    @field_validator("ad_set_id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return None if v is None else str(v).strip()
class DuplicateCampaignArgs(ToolArgs):
    campaign_id: str
    deep_copy: Optional[bool] = None
    rename_strategy: Optional[str] = None
    rename_suffix: Optional[str] = None
    rename_prefix: Optional[str] = None
    status_option: Optional[str] = None
class DuplicateAdSetArgs(ToolArgs):
    ad_set_id: str
    campaign_id: Optional[str] = None
    deep_copy: Optional[bool] = None
    rename_strategy: Optional[str] = None
    rename_suffix: Optional[str] = None
    rename_prefix: Optional[str] = None
    status_option: Optional[str] = None
class DuplicateAdArgs(ToolArgs):
    ad_id: str
    ad_set_id: Optional[str] = None
    rename_strategy: Optional[str] = None
    rename_suffix: Optional[str] = None
    rename_prefix: Optional[str] = None
    status_option: Optional[str] = None
TOOL_ARGS_MODELS: Dict[str, Type[ToolArgs]] = {
    "get_campaigns": GetCampaignsArgs,
    "update_campaign": UpdateCampaignArgs,
    "create_campaign": CreateCampaignArgs,
    "create_adset": CreateAdSetArgs,
    "create_ad": CreateAdArgs,
    "duplicate_campaign": DuplicateCampaignArgs,
    "duplicate_adset": DuplicateAdSetArgs,
    "duplicate_ad": DuplicateAdArgs,
}
def parse_tool_arguments(tool_name: str, arguments: Union[str, Dict[str, Any], None]) -> ToolArgs:
    from adcommand_kit.ckit_cloudtool import sanitize_args
    model_cls = TOOL_ARGS_MODELS.get(tool_name)
    if model_cls is None:
        raise FacebookValidationError("tool", f"unknown tool '{tool_name}'")
    args, problem = sanitize_args(arguments)
    if problem:
        raise FacebookValidationError("arguments", f"{tool_name}: {problem}")
    try:
        return model_cls.model_validate(args)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ())) or "arguments"
        raise FacebookValidationError(loc, f"{tool_name}: {first.get('msg', str(e))}")
