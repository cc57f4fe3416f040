"""
Materials Resolver: which previously uploaded creative files go into which ad.
"""

from __future__ import annotations
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger("execution.materials")

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".webm")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

UPLOADED_PHRASES = ("uploaded files", "uploaded materials", "use them from uploaded", "with uploaded", "use uploaded")

_MEDIA = r"(\S+\.(?:mp4|mov|jpg|jpeg|png|gif))"
POSITION_PATTERNS: List[Tuple[re.Pattern, int]] = [
    (re.compile(rf"use\s+{_MEDIA}\s+for\s+(?:the\s+)?(?:first|1st|ad\s*1)", re.I), 0),
    (re.compile(rf"{_MEDIA}\s+for\s+(?:the\s+)?(?:first|1st|ad\s*1)", re.I), 0),
    (re.compile(rf"use\s+{_MEDIA}\s+for\s+(?:the\s+)?(?:second|2nd|ad\s*2)", re.I), 1),
    (re.compile(rf"{_MEDIA}\s+for\s+(?:the\s+)?(?:second|2nd|ad\s*2)", re.I), 1),
    (re.compile(rf"use\s+{_MEDIA}\s+for\s+(?:the\s+)?(?:third|3rd|ad\s*3)", re.I), 2),
    (re.compile(rf"{_MEDIA}\s+for\s+(?:the\s+)?(?:third|3rd|ad\s*3)", re.I), 2),
]


def category_for(filename: str) -> str:
    lowered = (filename or "").lower()
    if lowered.endswith(VIDEO_EXTENSIONS):
        return "video"
    return "image"


class Material(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    filename: str
    original_name: str = ""
    file_url: str
    category: str = "image"
    uploaded_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return str(v)

    @field_validator("category", mode="before")
    @classmethod
    def lower_category(cls, v):
        return str(v or "image").lower()

    @property
    def display_name(self) -> str:
        return self.original_name or self.filename

    def uploaded_ts(self) -> Optional[float]:
        if self.uploaded_at is None:
            return None
        return self.uploaded_at.timestamp()


class MaterialsSource(Protocol):
    async def list_materials(self, account_id: str) -> List[Material]:
        ...


class HttpMaterialsSource:
    """
    GET {base_url}/api/get-materials?adName=<account>, falling back to the unfiltered
    list when the account has nothing of its own. Any failure means "no materials".
    """

    def __init__(
        self,
        base_url: str,
        tenant_id: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if tenant_id:
            self._headers["x-tenant-id"] = tenant_id

    async def _fetch(self, client: httpx.AsyncClient, params: Optional[Dict[str, str]]) -> List[Material]:
        response = await client.get(f"{self.base_url}/api/get-materials", params=params, headers=self._headers, timeout=self.timeout)
        if response.status_code != 200:
            logger.warning("materials endpoint returned HTTP %s", response.status_code)
            return []
        body = response.json()
        items = body.get("materials", []) if isinstance(body, dict) else []
        result = []
        for item in items:
            try:
                result.append(Material.model_validate(item))
            except ValueError as e:
                logger.warning("skipping malformed material %r: %s", item, e)
        return result

    async def list_materials(self, account_id: str) -> List[Material]:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                materials = await self._fetch(client, {"adName": account_id})
                if not materials:
                    materials = await self._fetch(client, None)
                return materials
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("materials unavailable, continuing without them: %s", e)
            return []


def _mentioned(material: Material, command_lower: str) -> bool:
    names = [n.lower() for n in (material.original_name, material.filename) if n]
    return any(n in command_lower for n in names)


def select_command_materials(
    command: str,
    available: List[Material],
    recent_seconds: float = 600.0,
    limit: int = 5,
    now: Optional[float] = None,
) -> List[Material]:
    """
    Files named in the command win; otherwise the recent uploads; otherwise the first few.
    """
    if not available:
        return []
    command_lower = (command or "").lower()
    named = [m for m in available if _mentioned(m, command_lower)]
    if named:
        return named
    now = time.time() if now is None else now
    recent = [m for m in available if m.uploaded_ts() is not None and m.uploaded_ts() > now - recent_seconds]
    if recent:
        return recent[:limit]
    return available[:limit]


@dataclass
class MaterialAssignment:
    ad_index: int
    filename: str
    material: Material

    @property
    def media_field(self) -> str:
        return "videoUrl" if self.material.category == "video" else "imageUrl"


def _strip_ext(name: str) -> str:
    return re.sub(r"\.[^.]+$", "", name)


def build_material_assignments(command: str, materials: List[Material], requested_ads: int) -> List[MaterialAssignment]:
    if not materials or requested_ads <= 0:
        return []
    command_lower = (command or "").lower()
    assignments: List[MaterialAssignment] = []
    taken_slots = set()
    taken_materials = set()

    for pattern, ad_index in POSITION_PATTERNS:
        for m in pattern.finditer(command_lower):
            if ad_index in taken_slots:
                continue
            mentioned = m.group(1).lower()
            stem = _strip_ext(mentioned)
            for mat in materials:
                name = mat.display_name.lower()
                if name == mentioned or _strip_ext(name) == stem or stem in name:
                    if mat.id not in taken_materials:
                        assignments.append(MaterialAssignment(ad_index, mat.display_name, mat))
                        taken_slots.add(ad_index)
                        taken_materials.add(mat.id)
                    break

    for i in range(requested_ads):
        if i in taken_slots:
            continue
        free = next((mat for mat in materials if mat.id not in taken_materials), None)
        if free is None:
            break
        assignments.append(MaterialAssignment(i, free.display_name, free))
        taken_slots.add(i)
        taken_materials.add(free.id)

    assignments.sort(key=lambda a: a.ad_index)
    return assignments


@dataclass
class ResolvedMaterials:
    available: List[Material] = field(default_factory=list)
    for_command: List[Material] = field(default_factory=list)
    assignments: List[MaterialAssignment] = field(default_factory=list)

    def assignment(self, ad_index: int) -> Optional[MaterialAssignment]:
        return next((a for a in self.assignments if a.ad_index == ad_index), None)

    def material_for_ad(self, ad_index: int) -> Optional[Material]:
        a = self.assignment(ad_index)
        if a is not None:
            return a.material
        if self.for_command:
            return self.for_command[ad_index % len(self.for_command)]
        return None

    def media_for_ad(self, ad_index: int) -> Tuple[Optional[Material], Optional[Material], bool]:
        """Returns (image, video, prefer_video) for the ad at this position."""
        mat = self.material_for_ad(ad_index)
        if mat is None:
            return None, None, False
        if mat.category == "video":
            return None, mat, True
        return mat, None, False

    def thumbnail(self) -> Optional[Material]:
        for pool in (self.for_command, self.available):
            for m in pool:
                if m.category == "image":
                    return m
        return None

    def info_text(self) -> str:
        if self.for_command:
            header, items = "MATERIALS AVAILABLE FOR USE (Auto-Select Mode):", self.for_command
        elif self.available:
            header, items = "AVAILABLE MATERIALS:", self.available
        else:
            return "No materials available. Create ads without images/videos or ask user to upload materials first."
        lines = [f"- {m.display_name} ({m.category.upper()}) -> URL: {m.file_url}" for m in items]
        return header + "\n" + "\n".join(lines)

    def assignments_dict(self) -> Dict[str, Any]:
        return {
            f"ad{a.ad_index + 1}": {"filename": a.filename, a.media_field: a.material.file_url}
            for a in self.assignments
        }


def resolve_materials(
    command: str,
    available: List[Material],
    requested_ads: int,
    recent_seconds: float = 600.0,
    limit: int = 5,
    now: Optional[float] = None,
) -> ResolvedMaterials:
    chosen = select_command_materials(command, available, recent_seconds=recent_seconds, limit=limit, now=now)
    return ResolvedMaterials(
        available=list(available),
        for_command=chosen,
        assignments=build_material_assignments(command, chosen, requested_ads),
    )


def is_reachable_media_url(url: Optional[str], base_urls: List[str], materials: List[Material]) -> bool:
    # The platform downloads media itself, so only our own hosts (or known uploads) work
    if not url:
        return False
    if any(base and base in url for base in base_urls):
        return True
    return any(m.file_url == url for m in materials)
