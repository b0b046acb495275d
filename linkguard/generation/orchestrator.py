"""
Batch Link Generation

Turns a generation request into survey links and writes them to the store
in bounded chunks:

- sequential: contiguous resp ids from a seed; the first `test_count` are TEST links
- imported: an explicit ordered id list (e.g. an uploaded CSV column)
- hybrid: sequential ids followed by imported ids

Each id is fanned out once per target vendor, or created once when the
request names no vendors. Inside a chunk creations run concurrently and a
failure never aborts its siblings; chunks are separated by a short delay.
"""

import asyncio
import logging
import secrets
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..errors import GenerationError, ValidationError
from ..models import LinkType, SurveyLink, new_id, utcnow
from ..persistence import LinkStore
from .resp_ids import build_survey_url, parse_resp_id, sequential_resp_ids

logger = logging.getLogger(__name__)

# Request size limits
MAX_LINKS_UNRESTRICTED = 10_000
MAX_LINKS_PER_VENDOR = 5_000
MAX_LINKS_TOTAL = 50_000

TOKEN_BYTES = 24


class GenerationMode(Enum):
    SEQUENTIAL = "sequential"
    IMPORTED = "imported"
    HYBRID = "hybrid"


@dataclass
class GenerationRequest:
    """What to generate for a project."""
    project_ref: str
    mode: GenerationMode = GenerationMode.SEQUENTIAL
    start_resp_id: Optional[str] = None
    test_count: int = 0
    live_count: int = 0
    imported_resp_ids: List[str] = field(default_factory=list)
    vendor_refs: List[str] = field(default_factory=list)
    # Overrides the project's survey URL
    survey_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationRequest":
        mode = data.get("mode", GenerationMode.SEQUENTIAL.value)
        try:
            mode = GenerationMode(mode)
        except ValueError:
            raise ValidationError(
                f"Invalid generation mode: {mode!r}. Must be: sequential, imported, or hybrid"
            )
        return cls(
            project_ref=data["project_ref"],
            mode=mode,
            start_resp_id=data.get("start_resp_id"),
            test_count=int(data.get("test_count") or 0),
            live_count=int(data.get("live_count") or 0),
            imported_resp_ids=list(data.get("imported_resp_ids") or []),
            vendor_refs=list(data.get("vendor_refs") or []),
            survey_url=data.get("survey_url"),
        )


@dataclass
class GenerationResult:
    links: List[SurveyLink]
    failed_count: int
    batch_id: str
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, link_base_url: Optional[str] = None) -> Dict[str, Any]:
        links = []
        for link in self.links:
            data = link.to_dict()
            if link_base_url:
                data["link_url"] = participant_url(link_base_url, link.token)
            links.append(data)
        return {
            "batch_id": self.batch_id,
            "failed_count": self.failed_count,
            "summary": self.summary,
            "links": links,
        }


def participant_url(link_base_url: str, token: str) -> str:
    return f"{link_base_url.rstrip('/')}/{token}"


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


# =============================================================================
# Request validation
# =============================================================================

def _planned_ids(request: GenerationRequest, vendor_refs: Sequence[str]) -> List[tuple]:
    """(resp_id, link_type) pairs in output order. Raises ValidationError."""
    if not isinstance(request.mode, GenerationMode):
        raise ValidationError(f"Invalid generation mode: {request.mode!r}")
    if request.test_count < 0 or request.live_count < 0:
        raise ValidationError("test_count and live_count must be non-negative")

    sequential = request.mode in (GenerationMode.SEQUENTIAL, GenerationMode.HYBRID)
    total = 0
    if sequential:
        if not request.start_resp_id:
            raise ValidationError(f"start_resp_id is required for {request.mode.value} mode")
        parse_resp_id(request.start_resp_id)
        total = request.test_count + request.live_count
        if total <= 0:
            raise ValidationError(
                f"test_count and/or live_count must be greater than 0 for {request.mode.value} mode"
            )

    imported: List[str] = []
    if request.mode in (GenerationMode.IMPORTED, GenerationMode.HYBRID):
        imported = [str(r).strip() for r in request.imported_resp_ids if str(r).strip()]
        if not imported:
            raise ValidationError(f"Imported resp_ids are required for {request.mode.value} mode")

    # Limits apply to the counts, before any id is built
    _check_limits(total + len(imported), vendor_refs)

    planned = []
    if sequential:
        for index, resp_id in enumerate(sequential_resp_ids(request.start_resp_id, total)):
            planned.append((resp_id, LinkType.TEST if index < request.test_count else LinkType.LIVE))
    planned.extend((resp_id, LinkType.LIVE) for resp_id in imported)

    duplicates = [resp_id for resp_id, count in Counter(r for r, _ in planned).items() if count > 1]
    if duplicates:
        raise ValidationError(
            f"Duplicate resp_ids in request: {duplicates[:10]}",
            {"duplicates": duplicates},
        )
    return planned


def _check_limits(id_count: int, vendor_refs: Sequence[str]):
    if not vendor_refs:
        if id_count > MAX_LINKS_UNRESTRICTED:
            raise ValidationError(
                f"Cannot generate more than {MAX_LINKS_UNRESTRICTED} links in one request",
                {"requested": id_count},
            )
        return
    if id_count > MAX_LINKS_PER_VENDOR:
        raise ValidationError(
            f"Cannot generate more than {MAX_LINKS_PER_VENDOR} links per vendor",
            {"requested": id_count},
        )
    total = id_count * len(vendor_refs)
    if total > MAX_LINKS_TOTAL:
        raise ValidationError(
            f"Cannot generate more than {MAX_LINKS_TOTAL} links in total",
            {"requested": total},
        )


# =============================================================================
# Generator
# =============================================================================

class LinkGenerator:
    """
    Bulk link creation against a LinkStore.

    Usage:
        generator = LinkGenerator(store, batch_size=50, batch_delay=0.1)
        result = await generator.generate(GenerationRequest(
            project_ref="p1", start_resp_id="al001", test_count=3, live_count=7,
        ))
    """

    def __init__(self, store: LinkStore, batch_size: int = 50, batch_delay: float = 0.1):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Create every link the request describes.

        Raises:
            ValidationError: malformed request or vendor outside the project
                (raised before any link is written; shape errors before any
                store call at all)
            NotFound: unknown project
            GenerationError: every creation failed
        """
        vendor_refs = list(dict.fromkeys(request.vendor_refs))
        planned = _planned_ids(request, vendor_refs)

        project = await self.store.get_project(request.project_ref)
        if vendor_refs:
            assigned = set(await self.store.project_vendor_refs(project.id))
            outside = [v for v in vendor_refs if v not in assigned]
            if outside:
                raise ValidationError(
                    f"Vendors not assigned to project {project.id}: {outside}",
                    {"vendor_refs": outside},
                )

        base_url = request.survey_url if request.survey_url is not None else project.survey_url
        batch_id = new_id()
        created_at = utcnow()
        links = [
            SurveyLink(
                id=new_id(),
                project_ref=project.id,
                vendor_ref=vendor_ref,
                resp_id=resp_id,
                token=new_token(),
                link_type=link_type,
                survey_url=build_survey_url(base_url, resp_id),
                batch_id=batch_id,
                created_at=created_at,
                updated_at=created_at,
            )
            for resp_id, link_type in planned
            for vendor_ref in (vendor_refs or [None])
        ]

        logger.info(
            f"Generating {len(links)} links for project {project.id} "
            f"({request.mode.value}, {len(planned)} ids x {max(len(vendor_refs), 1)} vendor slots)"
        )

        created, errors = await self._create_in_chunks(links)
        failed_count = len(links) - len(created)

        if not created:
            raise GenerationError(
                f"All {len(links)} link creations failed",
                failed_count=failed_count,
                errors=errors[:10],
            )
        if failed_count:
            logger.warning(f"Batch {batch_id}: {failed_count}/{len(links)} link creations failed")

        return GenerationResult(
            links=created,
            failed_count=failed_count,
            batch_id=batch_id,
            summary=self._summarize(request, created, failed_count, len(planned)),
        )

    async def _create_in_chunks(self, links: List[SurveyLink]):
        created: List[SurveyLink] = []
        errors: List[str] = []
        chunks = [links[i:i + self.batch_size] for i in range(0, len(links), self.batch_size)]

        for index, chunk in enumerate(chunks):
            results = await asyncio.gather(
                *(self.store.create_link(link) for link in chunk),
                return_exceptions=True,
            )
            chunk_failures = 0
            for link, result in zip(chunk, results):
                if isinstance(result, Exception):
                    chunk_failures += 1
                    errors.append(f"{link.resp_id}: {result}")
                else:
                    created.append(result)
            if chunk_failures:
                logger.warning(f"Chunk {index + 1}/{len(chunks)}: {chunk_failures} creations failed")

            if index < len(chunks) - 1 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        return created, errors

    def _summarize(
        self,
        request: GenerationRequest,
        created: List[SurveyLink],
        failed_count: int,
        id_count: int,
    ) -> Dict[str, Any]:
        by_vendor = Counter(link.vendor_ref or "unrestricted" for link in created)
        by_type = Counter(link.link_type.value for link in created)
        return {
            "mode": request.mode.value,
            "resp_id_count": id_count,
            "requested": id_count * max(len(set(request.vendor_refs)), 1),
            "created": len(created),
            "failed": failed_count,
            "test_links": by_type.get(LinkType.TEST.value, 0),
            "live_links": by_type.get(LinkType.LIVE.value, 0),
            "by_vendor": dict(by_vendor),
        }
