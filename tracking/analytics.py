"""Usage reporting and duration formatting for display."""

from typing import Any, Dict, List

from screen.blocklist import Blocklist


def format_duration(millis: float, full_precision: bool = False) -> str:
    """
    Format a duration in milliseconds as a human-readable string.

    Truncation to whole seconds happens only here, at display time.

    Args:
        millis: Duration in milliseconds
        full_precision: If True, always show all components including
                        seconds even when hours > 0.

    Returns:
        Formatted string like "1 min 30 secs", "45 secs", "2 hrs 15 mins".

    Examples:
        >>> format_duration(90_000)
        '1 min 30 secs'
        >>> format_duration(3_725_000)
        '1 hr 2 mins'
        >>> format_duration(0)
        '0 sec'
    """
    total_seconds = int(millis // 1000) if millis >= 0 else 0

    hours = total_seconds // 3600
    mins = (total_seconds % 3600) // 60
    secs = total_seconds % 60

    parts = []

    if hours > 0:
        parts.append(f"{hours} {'hr' if hours == 1 else 'hrs'}")

    if mins > 0 or (full_precision and hours > 0):
        parts.append(f"{mins} {'min' if mins == 1 else 'mins'}")

    if secs > 0 or full_precision:
        if hours == 0 or full_precision:
            parts.append(f"{secs} {'sec' if secs == 1 else 'secs'}")

    return " ".join(parts) if parts else "0 sec"


def compute_usage_report(blocklist: Blocklist, snapshot: Dict[str, Dict[str, int]]) -> Dict[str, Any]:
    """
    Combine the registry and a ledger snapshot into a per-group report.

    Args:
        blocklist: Registry with items and group limits
        snapshot: UsageLedger.snapshot() output

    Returns:
        {"groups": [{group_id, limit_minutes, used_ms, remaining_ms,
                     exhausted, items: [{identifier, label, kind, used_ms}]}]}
    """
    item_usage = snapshot.get("items", {})
    group_usage = snapshot.get("groups", {})

    groups: List[Dict[str, Any]] = []
    for group_id in sorted(blocklist.groups):
        group = blocklist.groups[group_id]
        used = group_usage.get(group_id, 0)
        if group.time_limit_minutes <= 0:
            exhausted = used > 0
        else:
            exhausted = used >= group.time_limit_millis
        groups.append({
            "group_id": group_id,
            "limit_minutes": group.time_limit_minutes,
            "used_ms": used,
            "remaining_ms": max(0, group.time_limit_millis - used),
            "exhausted": exhausted,
            "items": [
                {
                    "identifier": item.identifier,
                    "label": item.label,
                    "kind": item.kind.value,
                    "used_ms": item_usage.get(item.identifier, 0),
                }
                for item in blocklist.items_in_group(group_id)
            ],
        })
    return {"groups": groups}


def generate_summary_text(report: Dict[str, Any]) -> str:
    """
    Render a usage report as plain text for the console.

    Args:
        report: Output of compute_usage_report()

    Returns:
        Multi-line summary string.
    """
    lines = []
    for group in report["groups"]:
        state = "BLOCKED" if group["exhausted"] else f"{format_duration(group['remaining_ms'])} left"
        lines.append(
            f"Group '{group['group_id']}': {format_duration(group['used_ms'], full_precision=True)} "
            f"of {group['limit_minutes']} min ({state})"
        )
        for item in group["items"]:
            lines.append(f"  [{item['kind']}] {item['label']}: {format_duration(item['used_ms'])}")
    return "\n".join(lines)
