"""
Facebook Ads Integration

Tool definitions the chat model sees, typed arguments for each tool, and the HTTP
gateway that executes them against the Marketing API on our behalf.

Usage:
    from adcommand_kit.integrations.facebook import (
        FACEBOOK_TOOLS,
        HttpToolGateway,
        parse_tool_arguments,
    )

    gateway = HttpToolGateway("http://localhost:3000", tenant_id="t1", business_id="b1")
    args = parse_tool_arguments("create_campaign", toolcall.arguments)
    result = await gateway.call_tool("create_campaign", args.to_payload())
"""

from .client import HttpToolGateway, ToolGateway
from .exceptions import (
    FacebookAPIError,
    FacebookAuthError,
    FacebookError,
    FacebookTimeoutError,
    FacebookValidationError,
)
from .models import (
    BillingEvent,
    CampaignObjective,
    CampaignStatus,
    CreateAdArgs,
    CreateAdSetArgs,
    CreateCampaignArgs,
    CreativeArgs,
    OptimizationGoal,
    TargetingArgs,
    parse_tool_arguments,
)
from .tools import CREATE_TOOLS, DUPLICATE_TOOLS, FACEBOOK_TOOLS
from .utils import validate_ad_account_id

__all__ = [
    "HttpToolGateway",
    "ToolGateway",
    "FacebookAPIError",
    "FacebookAuthError",
    "FacebookError",
    "FacebookTimeoutError",
    "FacebookValidationError",
    "BillingEvent",
    "CampaignObjective",
    "CampaignStatus",
    "CreateAdArgs",
    "CreateAdSetArgs",
    "CreateCampaignArgs",
    "CreativeArgs",
    "OptimizationGoal",
    "TargetingArgs",
    "parse_tool_arguments",
    "CREATE_TOOLS",
    "DUPLICATE_TOOLS",
    "FACEBOOK_TOOLS",
    "validate_ad_account_id",
]
