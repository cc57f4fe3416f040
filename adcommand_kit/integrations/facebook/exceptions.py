from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional, Union
import httpx
logger = logging.getLogger("facebook.exceptions")
class FacebookError(Exception):
    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)
    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n{self.details}"
        return self.message
class FacebookAPIError(FacebookError):
    CODE_INVALID_PARAMS = 100
    CODE_PERMISSION_DENIED = 10
    CODE_AUTH_EXPIRED = 190
    CODE_RATE_LIMIT_1 = 4
    CODE_RATE_LIMIT_2 = 17
    CODE_RATE_LIMIT_3 = 32
    CODE_API_CALLS_EXCEEDED = 613
    CODE_AD_ACCOUNT_CALLS_EXCEEDED = 80004
    CODE_PERMISSIONS_ERROR = 200
    SUBCODE_NO_PAYMENT_METHOD = 1359188
    SUBCODE_RATE_LIMIT = 2446079
    RATE_LIMIT_CODES = {CODE_RATE_LIMIT_1, CODE_RATE_LIMIT_2, CODE_RATE_LIMIT_3, CODE_API_CALLS_EXCEEDED, CODE_AD_ACCOUNT_CALLS_EXCEEDED}
    ACCESS_DENIED_CODES = {CODE_PERMISSION_DENIED, CODE_PERMISSIONS_ERROR, CODE_AUTH_EXPIRED}
    def __init__(
        self,
        code: Union[int, str],
        message: str,
        error_type: str = "",
        error_subcode: Optional[Union[int, str]] = None,
        user_title: Optional[str] = None,
        user_msg: Optional[str] = None,
        fbtrace_id: Optional[str] = None,
        next_steps: Optional[List[str]] = None,
        raw: Optional[str] = None,
    ):
        self.code = code
        self.error_type = error_type
        self.error_subcode = error_subcode
        self.user_title = user_title
        self.user_msg = user_msg
        self.fbtrace_id = fbtrace_id
        self.next_steps = next_steps or []
        self.raw = raw
        details_parts = []
        if user_title:
            details_parts.append(f"**{user_title}**")
        if user_msg:
            details_parts.append(user_msg)
        details = "\n".join(details_parts) or None
        super().__init__(message, details)
    @classmethod
    def is_rate_limit_code(cls, code: Optional[int], subcode: Optional[int] = None) -> bool:
        return code in cls.RATE_LIMIT_CODES or subcode == cls.SUBCODE_RATE_LIMIT
    @classmethod
    def is_access_denied_code(cls, code: Optional[int]) -> bool:
        return code in cls.ACCESS_DENIED_CODES
    def error_text(self) -> str:
        # Text handed to the error normalizer: the structured body when the gateway sent one.
        if self.raw:
            return self.raw
        parts = [self.message]
        if self.user_msg:
            parts.append(self.user_msg)
        if isinstance(self.code, int):
            parts.append(f"code={self.code}")
        if self.error_subcode is not None:
            parts.append(f"subcode={self.error_subcode}")
        if self.fbtrace_id:
            parts.append(f"fbtrace_id={self.fbtrace_id}")
        return " | ".join(parts)
class FacebookAuthError(FacebookError):
    def __init__(self, message: str = "Not authorized: platform authentication required"):
        super().__init__(message)
class FacebookValidationError(FacebookError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid parameter '{field}': {message}")
class FacebookTimeoutError(FacebookError):
    def __init__(self, timeout: float, what: str = "Request"):
        self.timeout = timeout
        super().__init__(f"{what} timed out after {timeout} seconds")
def _api_error_from_body(body: Dict[str, Any], status_code: int, raw: str) -> FacebookAPIError:
    if isinstance(body.get("error"), dict):
        err = body["error"]
        return FacebookAPIError(
            code=err.get("code", status_code),
            message=err.get("message", "Unknown error"),
            error_type=err.get("type", ""),
            error_subcode=err.get("error_subcode"),
            user_title=err.get("error_user_title"),
            user_msg=err.get("error_user_msg"),
            fbtrace_id=err.get("fbtrace_id"),
        )
    if isinstance(body.get("code"), str):
        # Gateway-level structured error: {"code": "DSA_REQUIRED", "message": ..., "nextSteps": [...]}
        next_steps = body.get("nextSteps")
        return FacebookAPIError(
            code=body["code"],
            message=str(body.get("message") or body["code"]),
            error_subcode=body.get("error_subcode"),
            fbtrace_id=body.get("fbtrace_id"),
            next_steps=[str(s) for s in next_steps] if isinstance(next_steps, list) else None,
            raw=raw,
        )
    message = body.get("message") or body.get("error") or f"HTTP {status_code}"
    code = body.get("code")
    return FacebookAPIError(
        code=code if isinstance(code, int) and not isinstance(code, bool) else status_code,
        message=str(message),
        error_subcode=body.get("error_subcode"),
        fbtrace_id=body.get("fbtrace_id"),
        raw=raw,
    )
async def parse_api_error(response: httpx.Response) -> FacebookError:
    text = response.text
    if response.status_code == 401:
        return FacebookAuthError(f"Not authorized: {text[:300]}")
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Error parsing gateway error response: {e}")
        return FacebookAPIError(
            code=response.status_code,
            message=f"HTTP {response.status_code}: {text[:500]}",
        )
    if not isinstance(body, dict):
        return FacebookAPIError(code=response.status_code, message=f"HTTP {response.status_code}: {text[:500]}")
    return _api_error_from_body(body, response.status_code, text)
