"""
Error Normalizer.

Any failure coming out of a tool call (a plain string, a JSON body from the gateway,
a FacebookAPIError, an arbitrary exception) is classified into one fixed category
with a user-facing remediation script. First matching rule wins:

    structured code -> billing -> default_page -> dsa -> bid_required ->
    advantage_audience -> rate_limit -> permissions -> invalid_parameter -> generic

Blocking categories stop the run. The rest are retried up to the per-tool ceiling.
"""

from __future__ import annotations
import json
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from adcommand_kit.integrations.facebook.exceptions import FacebookAPIError
from adcommand_kit.integrations.facebook.utils import validate_ad_account_id


class ErrorCategory(str, Enum):
    BILLING = "billing"
    DEFAULT_PAGE = "default_page"
    DSA = "dsa"
    BID_REQUIRED = "bid_required"
    ADVANTAGE_AUDIENCE = "advantage_audience"
    PERMISSIONS = "permissions"
    INVALID_PARAMETER = "invalid_parameter"
    RATE_LIMIT = "rate_limit"
    GENERIC = "generic"


class BlockingCode(str, Enum):
    DSA_REQUIRED = "DSA_REQUIRED"
    DEFAULT_PAGE_REQUIRED = "DEFAULT_PAGE_REQUIRED"
    PAYMENT_METHOD_REQUIRED = "PAYMENT_METHOD_REQUIRED"


class BlockingActionType(str, Enum):
    OPEN_DSA_SETTINGS = "OPEN_DSA_SETTINGS"
    OPEN_DEFAULT_PAGE_SETTINGS = "OPEN_DEFAULT_PAGE_SETTINGS"


KNOWN_CODES = {c.value for c in BlockingCode}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ErrorDebug(_CamelModel):
    raw: str = ""
    code: Optional[Union[int, str]] = None
    subcode: Optional[Union[int, str]] = None
    fbtrace_id: Optional[str] = None
    request_id: Optional[str] = None


class NormalizedExecutionError(_CamelModel):
    category: ErrorCategory
    blocking: bool
    user_title: str
    user_message: str
    next_steps: List[str] = Field(default_factory=list)
    rationale: str = ""
    debug: ErrorDebug = Field(default_factory=ErrorDebug)


class BlockingAction(_CamelModel):
    type: BlockingActionType
    tenant_id: str = ""
    ad_account_id: str = ""


class ExecutionBlockingError(_CamelModel):
    code: Optional[BlockingCode] = None
    category: ErrorCategory
    blocking: bool = True
    user_title: str
    user_message: str
    message: str
    next_steps: List[str] = Field(default_factory=list)
    action: Optional[BlockingAction] = None
    debug: ErrorDebug = Field(default_factory=ErrorDebug)


class _ParsedPayload:
    def __init__(self):
        self.known_code: Optional[str] = None
        self.next_steps: List[str] = []
        self.code: Optional[Union[int, str]] = None
        self.subcode: Optional[Union[int, str]] = None
        self.fbtrace_id: Optional[str] = None
        self.request_id: Optional[str] = None


_CODE_RE = re.compile(r"(?<![a-z_])code=(\d+)", re.I)
_SUBCODE_RE = re.compile(r"subcode=(\d+)", re.I)
_TRACE_RE = re.compile(r"fbtrace[_\s-]*id[=:]\s*([a-z0-9_-]+)", re.I)
_REQUEST_RE = re.compile(r"request[_\s-]*id[=:]\s*([a-z0-9_-]+)", re.I)


def stringify_error(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, FacebookAPIError):
        return error.error_text()
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return "Unknown error"


def _parse_payload(raw: str) -> _ParsedPayload:
    p = _ParsedPayload()
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        body = None
    if isinstance(body, dict):
        # Graph API bodies carry the details under "error", gateway bodies at the top level
        inner = body["error"] if isinstance(body.get("error"), dict) else body
        code = inner.get("code", body.get("code"))
        if isinstance(code, (int, str)) and not isinstance(code, bool):
            if code in KNOWN_CODES:
                p.known_code = code
            p.code = code
        next_steps = body.get("nextSteps", inner.get("nextSteps"))
        if isinstance(next_steps, list):
            p.next_steps = [str(s) for s in next_steps if s]
        subcode = inner.get("error_subcode", body.get("error_subcode"))
        if isinstance(subcode, (int, str)) and not isinstance(subcode, bool):
            p.subcode = subcode
        for key in ("fbtrace_id", "request_id"):
            value = inner.get(key, body.get(key))
            if isinstance(value, str):
                setattr(p, key, value)

    m = _CODE_RE.search(raw)
    if p.code is None and m:
        p.code = int(m.group(1))
    m = _SUBCODE_RE.search(raw)
    if p.subcode is None and m:
        p.subcode = int(m.group(1))
    m = _TRACE_RE.search(raw)
    if p.fbtrace_id is None and m:
        p.fbtrace_id = m.group(1)
    m = _REQUEST_RE.search(raw)
    if p.request_id is None and m:
        p.request_id = m.group(1)
    return p


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_execution_error(error: Any) -> NormalizedExecutionError:
    raw = stringify_error(error)
    text = raw.lower()
    p = _parse_payload(raw)

    # Structured errors carried on the exception win over the text
    if isinstance(error, FacebookAPIError):
        if p.code is None and isinstance(error.code, int):
            p.code = error.code
        if p.subcode is None and error.error_subcode is not None:
            p.subcode = error.error_subcode
        if p.fbtrace_id is None and error.fbtrace_id:
            p.fbtrace_id = error.fbtrace_id
        if not p.next_steps and error.next_steps:
            p.next_steps = list(error.next_steps)
        if p.known_code is None and isinstance(error.code, str) and error.code in KNOWN_CODES:
            p.known_code = error.code

    code = _as_int(p.code)
    subcode = _as_int(p.subcode)
    debug = ErrorDebug(raw=raw, code=p.code, subcode=p.subcode, fbtrace_id=p.fbtrace_id, request_id=p.request_id)

    def result(category, blocking, title, message, steps, rationale, structured_steps=True):
        if structured_steps and p.next_steps:
            steps = p.next_steps
        return NormalizedExecutionError(
            category=category,
            blocking=blocking,
            user_title=title,
            user_message=message,
            next_steps=list(steps),
            rationale=rationale,
            debug=debug,
        )

    def billing():
        return result(
            ErrorCategory.BILLING, True,
            "Billing setup required",
            "Meta blocked this action because this ad account does not have a valid payment method.",
            [
                "Open Meta Ads Manager for this ad account.",
                "Go to Billing and payments and add or confirm a payment method.",
                "Retry this command.",
            ],
            "Campaign creation cannot continue until billing prerequisites are met.",
        )

    def default_page():
        return result(
            ErrorCategory.DEFAULT_PAGE, True,
            "Default Facebook Page required",
            "Lead/link ads require a default Facebook Page connected to this ad account.",
            [
                "Set a default Page for this ad account.",
                "Make sure the page is connected and selectable in the business.",
                "Retry this command.",
            ],
            "Meta requires a promotable Page before ad set/ad creation.",
        )

    def dsa():
        return result(
            ErrorCategory.DSA, True,
            "DSA information is missing",
            "This account is missing required beneficiary/payer fields for EU-targeted ads.",
            [
                "Open DSA settings for this ad account.",
                "Set beneficiary and payer (or use autofill).",
                "Retry this command.",
            ],
            "EU-targeted delivery is blocked until DSA data is configured.",
        )

    # An explicit structured code wins over whatever the message text says
    by_known_code = {
        BlockingCode.PAYMENT_METHOD_REQUIRED.value: billing,
        BlockingCode.DEFAULT_PAGE_REQUIRED.value: default_page,
        BlockingCode.DSA_REQUIRED.value: dsa,
    }
    if p.known_code in by_known_code:
        return by_known_code[p.known_code]()

    if (
        "payment_method_required" in text
        or "no payment method" in text
        or "update payment method" in text
        or "billing and payment centre" in text
        or subcode == FacebookAPIError.SUBCODE_NO_PAYMENT_METHOD
    ):
        return billing()

    if "default_page_required" in text or "select a default page" in text or "no promotable page found" in text:
        return default_page()

    if "dsa_required" in text or "set dsa payor/beneficiary" in text or ("beneficiary" in text and "payer" in text):
        return dsa()

    if "bid amount required" in text:
        return result(
            ErrorCategory.BID_REQUIRED, False,
            "Bid value required by Meta",
            "Meta requires an explicit bid amount for this optimization setup. We can auto-apply a safe fallback and retry.",
            ["Retry the command. The system will apply a fallback bid cap automatically."],
            "The ad set request is valid except for a required bid constraint.",
            structured_steps=False,
        )

    if "advantage audience" in text:
        return result(
            ErrorCategory.ADVANTAGE_AUDIENCE, False,
            "Advantage Audience setting required",
            "Meta expects an explicit Advantage Audience flag in targeting. We can set a compatible default and retry.",
            ["Retry the command. The system will set targetingAutomation.advantageAudience automatically."],
            "The request needs an explicit targeting automation flag to be accepted.",
            structured_steps=False,
        )

    if (
        "too many api calls" in text
        or "too many calls" in text
        or "user request limit reached" in text
        or FacebookAPIError.is_rate_limit_code(code, subcode)
    ):
        return result(
            ErrorCategory.RATE_LIMIT, False,
            "Rate limit hit",
            "Meta is temporarily throttling requests for this ad account. The system will automatically retry after a short delay.",
            [
                "Wait a few seconds and retry.",
                "If repeated, reduce the number of concurrent operations.",
            ],
            "Meta enforces per-account and per-app rate limits. Backing off and retrying resolves transient throttles.",
            structured_steps=False,
        )

    if "permission" in text or "not authorized" in text or FacebookAPIError.is_access_denied_code(code):
        return result(
            ErrorCategory.PERMISSIONS, True,
            "Permissions issue",
            "The connected Meta user or token does not have enough permissions for this action.",
            [
                "Verify this user has Admin/Advertiser rights for the ad account and page.",
                "Reconnect token/session if needed.",
                "Retry this command.",
            ],
            "Meta denied access before processing the operation.",
            structured_steps=False,
        )

    if "invalid parameter" in text or "blame_field_specs" in text:
        return result(
            ErrorCategory.INVALID_PARAMETER, False,
            "Some fields were rejected",
            "Meta rejected one or more submitted fields for this account/objective.",
            [
                "Review the suggested fixes in this step.",
                "Retry after adjusting targeting/creative if needed.",
            ],
            "The payload shape is close, but at least one field is not accepted.",
            structured_steps=False,
        )

    return result(
        ErrorCategory.GENERIC, False,
        "Execution error",
        "Meta rejected this step. You can review details and retry.",
        ["Check the error details and retry the command."],
        "The step failed with an unclassified API error.",
        structured_steps=False,
    )


_BLOCKING_CODE_BY_CATEGORY = {
    ErrorCategory.BILLING: BlockingCode.PAYMENT_METHOD_REQUIRED,
    ErrorCategory.DEFAULT_PAGE: BlockingCode.DEFAULT_PAGE_REQUIRED,
    ErrorCategory.DSA: BlockingCode.DSA_REQUIRED,
}

DSA_FALLBACK_STEPS = [
    "Open Tenant Settings > DSA.",
    "Autofill from Meta recommendations or set values manually.",
    "Retry the campaign creation request.",
]

_ACTION_BY_CODE = {
    BlockingCode.DSA_REQUIRED: BlockingActionType.OPEN_DSA_SETTINGS,
    BlockingCode.DEFAULT_PAGE_REQUIRED: BlockingActionType.OPEN_DEFAULT_PAGE_SETTINGS,
}


def to_blocking_error(
    normalized: NormalizedExecutionError,
    tenant_id: str,
    account_id: str,
    fallback_code: Optional[BlockingCode] = None,
) -> ExecutionBlockingError:
    """
    Translate a blocking failure into the payload the caller routes the user with.
    Billing gets no action: the fix happens in the platform's own billing pages.
    """
    code = _BLOCKING_CODE_BY_CATEGORY.get(normalized.category, fallback_code)
    next_steps = list(normalized.next_steps)
    if normalized.category == ErrorCategory.PERMISSIONS:
        code = None
    elif normalized.category not in _BLOCKING_CODE_BY_CATEGORY and code == BlockingCode.DSA_REQUIRED:
        next_steps = list(DSA_FALLBACK_STEPS)
    action = None
    if code in _ACTION_BY_CODE:
        action = BlockingAction(
            type=_ACTION_BY_CODE[code],
            tenant_id=tenant_id or "",
            ad_account_id=validate_ad_account_id(account_id) if account_id else "",
        )
    return ExecutionBlockingError(
        code=code,
        category=normalized.category,
        blocking=True,
        user_title=normalized.user_title,
        user_message=normalized.user_message,
        message=normalized.user_message,
        next_steps=next_steps,
        action=action,
        debug=normalized.debug,
    )
