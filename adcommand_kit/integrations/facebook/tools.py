from __future__ import annotations
from typing import List

from adcommand_kit.ckit_cloudtool import CloudTool

RENAME_STRATEGIES = ["DEEP_RENAME", "ONLY_TOP_LEVEL_RENAME", "NO_RENAME"]
STATUS_OPTIONS = ["ACTIVE", "PAUSED", "INHERITED_FROM_SOURCE"]

GET_CAMPAIGNS_TOOL = CloudTool(
    name="get_campaigns",
    description="Get Facebook campaigns for an account with performance insights (CTR, spend, impressions, clicks). Returns campaign data including status and metrics.",
    parameters={
        "type": "object",
        "properties": {
            "accountId": {"type": "string", "description": "The Facebook Ad Account ID (format: act_XXXXXXXXXX)"},
            "status": {"type": "array", "items": {"type": "string"}, "description": "Filter campaigns by status: ACTIVE, PAUSED, DELETED"},
        },
        "required": ["accountId"],
    },
)

UPDATE_CAMPAIGN_TOOL = CloudTool(
    name="update_campaign",
    description="Update an existing Facebook campaign. Can change status (ACTIVE/PAUSED), name or daily budget.",
    parameters={
        "type": "object",
        "properties": {
            "campaignId": {"type": "string", "description": "The campaign ID to update"},
            "status": {"type": "string", "description": "New status: ACTIVE or PAUSED"},
            "name": {"type": "string", "description": "New campaign name"},
            "dailyBudget": {"type": "number", "description": "New daily budget in cents"},
        },
        "required": ["campaignId"],
    },
)

CREATE_CAMPAIGN_TOOL = CloudTool(
    name="create_campaign",
    description="Create a new Facebook advertising campaign",
    parameters={
        "type": "object",
        "properties": {
            "accountId": {"type": "string", "description": "Facebook Ad Account ID"},
            "name": {"type": "string", "description": "Campaign name"},
            "objective": {"type": "string", "description": "Campaign objective (e.g., OUTCOME_LEADS)"},
            "dailyBudget": {"type": "number", "description": "Daily budget in cents"},
            "status": {"type": "string", "description": "Campaign status (ACTIVE, PAUSED)"},
        },
        "required": ["accountId", "name", "objective", "dailyBudget", "status"],
    },
)

CREATE_ADSET_TOOL = CloudTool(
    name="create_adset",
    description="Create a new ad set within a campaign",
    parameters={
        "type": "object",
        "properties": {
            "accountId": {"type": "string", "description": "Facebook Ad Account ID"},
            "campaignId": {"type": "string", "description": "Campaign ID to create ad set in"},
            "name": {"type": "string", "description": "Ad set name"},
            "optimizationGoal": {"type": "string", "description": "Optimization goal (e.g., LEAD_GENERATION)"},
            "billingEvent": {"type": "string", "description": "Billing event (IMPRESSIONS)"},
            "promotedObject": {
                "type": "object",
                "description": "Optional promoted object fields for adset requirements",
                "properties": {
                    "pageId": {"type": "string", "description": "Facebook Page ID when required by objective"},
                },
            },
            "bidAmount": {"type": "number", "description": "Bid amount in cents"},
            "dailyBudget": {"type": "number", "description": "Daily budget in cents"},
            "status": {"type": "string", "description": "Ad set status"},
            "targeting": {
                "type": "object",
                "description": "Targeting parameters including location, demographics, interests, and language.",
                "properties": {
                    "geoLocations": {
                        "type": "object",
                        "properties": {
                            "countries": {"type": "array", "items": {"type": "string"}, "description": "Country codes (e.g., [\"RO\"] for Romania, [\"US\"] for USA)"},
                        },
                    },
                    "ageMin": {"type": "number"},
                    "ageMax": {"type": "number"},
                    "genders": {"type": "array", "items": {"type": "number"}, "description": "1 for male, 2 for female. Omit for all genders."},
                    "interests": {"type": "array", "items": {"type": "string"}},
                    "locales": {"type": "array", "items": {"type": "string"}, "description": "2-letter ISO language codes as strings, e.g. [\"ro\"] for Romanian. Never numeric ids."},
                },
            },
        },
        "required": ["accountId", "campaignId", "name", "optimizationGoal", "billingEvent", "status"],
    },
)

CREATE_AD_TOOL = CloudTool(
    name="create_ad",
    description="Create a new Facebook ad with creative content",
    parameters={
        "type": "object",
        "properties": {
            "accountId": {"type": "string", "description": "Facebook Ad Account ID"},
            "adSetId": {"type": "string", "description": "Ad Set ID to attach the ad to"},
            "name": {"type": "string", "description": "Ad name"},
            "status": {"type": "string", "description": "Ad status (ACTIVE, PAUSED)"},
            "creative": {
                "type": "object",
                "description": "Ad creative content",
                "properties": {
                    "pageId": {"type": "string", "description": "Optional explicit Facebook Page ID"},
                    "title": {"type": "string", "description": "Ad headline"},
                    "body": {"type": "string", "description": "Ad body text"},
                    "linkUrl": {"type": "string", "description": "Landing page URL without query parameters"},
                    "urlParameters": {"type": "string", "description": "URL tracking parameters, e.g. utm_campaign={{campaign.name}}"},
                    "callToAction": {"type": "string", "description": "Call to action button (LEARN_MORE, SIGN_UP, ...)"},
                    "imageUrl": {"type": "string", "description": "Image URL from the materials list"},
                    "videoUrl": {"type": "string", "description": "Video URL from the materials list"},
                    "displayLink": {"type": "string", "description": "Display link text"},
                },
                "required": ["linkUrl"],
            },
        },
        "required": ["accountId", "adSetId", "name", "status", "creative"],
    },
)

DUPLICATE_CAMPAIGN_TOOL = CloudTool(
    name="duplicate_campaign",
    description="Duplicate an existing campaign with all its ad sets and ads using the platform's native copy. Preferred over recreating by hand.",
    parameters={
        "type": "object",
        "properties": {
            "campaignId": {"type": "string", "description": "Campaign ID to duplicate"},
            "deepCopy": {"type": "boolean", "description": "Copy all child objects (ad sets, ads). Default: true"},
            "renameStrategy": {"type": "string", "enum": RENAME_STRATEGIES, "description": "How to rename duplicated objects"},
            "renameSuffix": {"type": "string", "description": "Suffix added to duplicated names. Default: \" (Copy)\""},
            "renamePrefix": {"type": "string", "description": "Prefix added to duplicated names"},
            "statusOption": {"type": "string", "enum": STATUS_OPTIONS, "description": "Status for duplicated objects. Default: PAUSED"},
        },
        "required": ["campaignId"],
    },
)

DUPLICATE_ADSET_TOOL = CloudTool(
    name="duplicate_adset",
    description="Duplicate an existing ad set with all its ads. Can optionally move it to a different campaign.",
    parameters={
        "type": "object",
        "properties": {
            "adSetId": {"type": "string", "description": "Ad set ID to duplicate"},
            "campaignId": {"type": "string", "description": "Target campaign ID when moving to a different campaign"},
            "deepCopy": {"type": "boolean", "description": "Copy all child ads. Default: true"},
            "renameStrategy": {"type": "string", "enum": RENAME_STRATEGIES},
            "renameSuffix": {"type": "string"},
            "renamePrefix": {"type": "string"},
            "statusOption": {"type": "string", "enum": STATUS_OPTIONS},
        },
        "required": ["adSetId"],
    },
)

DUPLICATE_AD_TOOL = CloudTool(
    name="duplicate_ad",
    description="Duplicate an existing ad. Can optionally move it to a different ad set.",
    parameters={
        "type": "object",
        "properties": {
            "adId": {"type": "string", "description": "Ad ID to duplicate"},
            "adSetId": {"type": "string", "description": "Target ad set ID when moving to a different ad set"},
            "renameStrategy": {"type": "string", "enum": ["NO_RENAME", "ONLY_TOP_LEVEL_RENAME"]},
            "renameSuffix": {"type": "string"},
            "renamePrefix": {"type": "string"},
            "statusOption": {"type": "string", "enum": STATUS_OPTIONS},
        },
        "required": ["adId"],
    },
)

FACEBOOK_TOOLS: List[CloudTool] = [
    GET_CAMPAIGNS_TOOL,
    UPDATE_CAMPAIGN_TOOL,
    CREATE_CAMPAIGN_TOOL,
    CREATE_ADSET_TOOL,
    CREATE_AD_TOOL,
    DUPLICATE_CAMPAIGN_TOOL,
    DUPLICATE_ADSET_TOOL,
    DUPLICATE_AD_TOOL,
]

CREATE_TOOLS = {"create_campaign", "create_adset", "create_ad"}
DUPLICATE_TOOLS = {"duplicate_campaign", "duplicate_adset", "duplicate_ad"}
