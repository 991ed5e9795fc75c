from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..models.pipeline import PipelineChange, PipelineEntry

CHANGE_TYPES = ("addition", "change", "deletion")


def _as_iso_string(value: Optional[object]) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None:
        return datetime.now(timezone.utc).isoformat()
    return str(value)


def _to_datetime(value: Optional[object]) -> Optional[datetime]:
    """Parse a stored timestamp as aware UTC; naive values from older clients are taken as UTC."""
    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed is None:
        return None
    return parsed.replace(tzinfo=timezone.utc) if parsed.tzinfo is None else parsed


def record_change(
    log: List[PipelineChange],
    change_type: str,
    entry: PipelineEntry,
    description: str,
    user: str,
    when: Optional[datetime] = None,
) -> List[PipelineChange]:
    """Return a new log with the change prepended; the log is kept most-recent-first."""
    if change_type not in CHANGE_TYPES:
        raise ValueError(f"Unknown change type: {change_type}")
    change = PipelineChange(
        type=change_type,
        projectCode=entry.projectCode or "",
        projectName=entry.programName,
        client=entry.client,
        description=description,
        date=_as_iso_string(when),
        user=user,
    )
    return [change, *log]


def build_pipeline_changelog(entries: Iterable[PipelineEntry], user_email: str) -> List[PipelineChange]:
    """Reconstruct addition/change events from entry timestamps, for logs that predate the audit trail."""
    changes: List[PipelineChange] = []
    for entry in entries:
        if not entry.createdAt:
            continue
        creator = entry.createdBy or user_email or "system"
        changes.append(
            PipelineChange(
                type="addition",
                projectCode=entry.projectCode or "",
                projectName=entry.programName,
                client=entry.client,
                description="Created",
                date=_as_iso_string(entry.createdAt),
                user=str(creator),
            )
        )

        created_dt = _to_datetime(entry.createdAt)
        updated_dt = _to_datetime(entry.updatedAt)
        if created_dt and updated_dt and updated_dt > created_dt:
            changes.append(
                PipelineChange(
                    type="change",
                    projectCode=entry.projectCode or "",
                    projectName=entry.programName,
                    client=entry.client,
                    description="Updated",
                    date=_as_iso_string(entry.updatedAt),
                    user=str(entry.updatedBy or creator),
                )
            )

    return sorted(changes, key=lambda c: c.date, reverse=True)


def merge_changelog(existing: List[Dict[str, Any]], additions: List[PipelineChange]) -> List[Dict[str, Any]]:
    combined: List[Dict[str, Any]] = []
    seen = set()

    def _key(item: Dict[str, Any]):
        return (item.get("type"), item.get("projectCode"), item.get("date"))

    for item in [*existing, *(c.model_dump(mode="json") for c in additions)]:
        if not isinstance(item, dict):
            continue
        k = _key(item)
        if k in seen:
            continue
        seen.add(k)
        combined.append(item)

    combined.sort(key=lambda x: x.get("date") or "", reverse=True)
    return combined
