import logging
import re
from typing import Collection, List, Optional, Tuple

from ..core.config import current_year
from ..models.pipeline import PipelineEntry

log = logging.getLogger(__name__)

PROJECT_CODE_PATTERN = re.compile(r"^P(\d{4})-(\d{2})$")


def is_pipeline_code(value: Optional[str]) -> bool:
    return bool(value and PROJECT_CODE_PATTERN.match(value))


def format_code(counter: int, year: Optional[int] = None) -> str:
    yy = (year or current_year()) % 100
    return f"P{counter:04d}-{yy:02d}"


def generate_unique(existing_codes: Collection[str], counter: int, year: Optional[int] = None) -> Tuple[str, int]:
    """
    First free code at or after `counter`.

    Returns the code and the counter it was built from; callers store
    used_counter + 1.
    """
    candidate_counter = max(1, counter)
    code = format_code(candidate_counter, year)
    while code in existing_codes:
        candidate_counter += 1
        code = format_code(candidate_counter, year)
    return code, candidate_counter


def highest_counter(codes: Collection[Optional[str]]) -> int:
    highest = 0
    for code in codes:
        match = PROJECT_CODE_PATTERN.match(code or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def repair_project_codes(
    entries: List[PipelineEntry],
    counter: int,
    year: Optional[int] = None,
) -> Tuple[List[PipelineEntry], int, bool]:
    """
    Make every entry's code unique and keep the counter ahead of stored codes.

    The first entry seen with a code keeps it; later duplicates and entries
    without a code get freshly generated ones. Returns the repaired entries,
    the new counter and whether anything changed.
    """
    changed = False
    floor = highest_counter([e.projectCode for e in entries]) + 1
    if counter < floor:
        log.info("Raising project counter from %s to %s", counter, floor)
        counter = floor
        changed = True

    seen = set(e.projectCode for e in entries if e.projectCode)
    used = set()
    repaired: List[PipelineEntry] = []
    for entry in entries:
        code = entry.projectCode
        if code and code not in used:
            used.add(code)
            repaired.append(entry)
            continue
        new_code, used_counter = generate_unique(seen, counter, year)
        counter = used_counter + 1
        seen.add(new_code)
        used.add(new_code)
        log.warning("Reassigned duplicate project code %s -> %s", code, new_code)
        repaired.append(entry.model_copy(update={"projectCode": new_code}))
        changed = True

    return repaired, counter, changed
