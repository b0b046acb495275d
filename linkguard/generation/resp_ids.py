"""
Response ID Helpers

Business response ids look like a letter prefix followed by digits
(`al001`). Sequential runs keep the seed's digit width and widen naturally
once the number outgrows it: `al998` x 5 -> al998 al999 al1000 al1001 al1002.
"""

import re
from typing import List, NamedTuple

from ..errors import ValidationError

RESP_ID_PATTERN = re.compile(r"^([a-zA-Z]+)(\d+)$")


class RespIdSeed(NamedTuple):
    prefix: str
    number: int
    width: int


def parse_resp_id(resp_id: str) -> RespIdSeed:
    """Split `al001` into ("al", 1, 3). Raises ValidationError on other shapes."""
    match = RESP_ID_PATTERN.match((resp_id or "").strip())
    if not match:
        raise ValidationError(
            f"Invalid resp_id format: {resp_id!r}. Expected format like 'al001'",
            {"resp_id": resp_id},
        )
    prefix, digits = match.groups()
    return RespIdSeed(prefix, int(digits), len(digits))


def sequential_resp_ids(start_resp_id: str, count: int) -> List[str]:
    seed = parse_resp_id(start_resp_id)
    return [
        f"{seed.prefix}{number:0{seed.width}d}"
        for number in range(seed.number, seed.number + count)
    ]


def build_survey_url(base_url: str, resp_id: str) -> str:
    """
    Attach a resp id to a survey URL.

    - ends with "=": append the id directly
    - already has a query: add "&respId="
    - otherwise: add "?respId="
    """
    if not base_url:
        return ""
    if base_url.endswith("="):
        return f"{base_url}{resp_id}"
    if "=" in base_url:
        return f"{base_url}&respId={resp_id}"
    return f"{base_url}?respId={resp_id}"
