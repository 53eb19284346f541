"""
Guest list statistics shared by the server and the client session
"""

from typing import Any, Dict, Iterable


def guest_statistics(guests: Iterable[Dict[str, Any]], configuration: Dict[str, Any]) -> Dict[str, Any]:
    """Count guests overall, per category and per confirmation stage.

    Every configured category and stage is present in the result, with zero
    when no guest uses it.
    """
    by_category: Dict[str, int] = {c["id"]: 0 for c in configuration.get("categories") or []}
    stages = (configuration.get("confirmationStages") or {}).get("stages") or []
    by_stage: Dict[str, int] = {s["id"]: 0 for s in stages}

    total = 0
    for guest in guests:
        total += 1
        stage = guest.get("confirmation_stage") or "invited"
        by_stage[stage] = by_stage.get(stage, 0) + 1
        for category in guest.get("categories") or []:
            by_category[category] = by_category.get(category, 0) + 1

    return {
        "total": total,
        "confirmed": by_stage.get("confirmed", 0),
        "invited": by_stage.get("invited", 0),
        "declined": by_stage.get("declined", 0),
        "byCategory": by_category,
        "byConfirmationStage": by_stage,
    }
