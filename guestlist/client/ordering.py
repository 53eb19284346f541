"""
Guest list ordering: drag reorders that carry a guest's +1 and family along
"""

from typing import Any, Dict, List, Optional, Tuple

Guest = Dict[str, Any]

PLUS_ONE_SUFFIX = "'s +1"


def plus_one_name(name: str) -> str:
    return f"{name}{PLUS_ONE_SUFFIX}"


def is_plus_one_of(candidate: Guest, guest: Guest) -> bool:
    """True when ``candidate`` is named as ``guest``'s +1"""
    return candidate.get("name") == plus_one_name(guest.get("name") or "")


def is_same_family(first: Guest, second: Guest) -> bool:
    color = first.get("family_color")
    return bool(color) and color == second.get("family_color")


def resequence(guests: List[Guest]) -> List[Guest]:
    """Copies of ``guests`` with display_order set to 1..n in list order"""
    return [{**guest, "display_order": position} for position, guest in enumerate(guests, start=1)]


def find_move_block(
    guests: List[Guest],
    index: int,
    include_plus_one: bool = False,
    include_family_together: bool = False,
) -> Tuple[int, int]:
    """Inclusive ``(start, end)`` bounds of the block that moves with ``guests[index]``.

    With ``include_plus_one`` the block takes in the guest's +1 right after it,
    or, when the guest is itself a +1, the guest right before it. With
    ``include_family_together`` it then grows in both directions while the
    neighbour shares the edge guest's family color.
    """
    start = end = index

    if include_plus_one:
        if index + 1 < len(guests) and is_plus_one_of(guests[index + 1], guests[index]):
            end = index + 1
        elif index - 1 >= 0 and is_plus_one_of(guests[index], guests[index - 1]):
            start = index - 1

    if include_family_together:
        while start > 0 and is_same_family(guests[start], guests[start - 1]):
            start -= 1
        while end < len(guests) - 1 and is_same_family(guests[end], guests[end + 1]):
            end += 1

    return start, end


def reorder_guests(
    guests: List[Guest],
    from_index: int,
    to_index: int,
    include_plus_one: bool = False,
    include_family_together: bool = False,
) -> List[Guest]:
    """New ordering after dragging ``guests[from_index]`` onto ``to_index``.

    Without either flag this is a plain move of one guest. Otherwise the
    whole block from ``find_move_block`` moves as a unit and every other
    guest keeps its relative order. The result is resequenced 1..n.
    """
    if not 0 <= from_index < len(guests):
        raise IndexError(f"from_index {from_index} out of range for {len(guests)} guests")

    if not include_plus_one and not include_family_together:
        result = list(guests)
        moved = result.pop(from_index)
        result.insert(max(0, min(to_index, len(result))), moved)
        return resequence(result)

    start, end = find_move_block(guests, from_index, include_plus_one, include_family_together)
    block_size = end - start + 1

    insert_at = to_index
    if insert_at > start:
        # Removing the block shifts later targets left
        insert_at = insert_at - block_size + 1
    insert_at = max(0, min(len(guests) - block_size, insert_at))

    block = guests[start:end + 1]
    rest = guests[:start] + guests[end + 1:]
    return resequence(rest[:insert_at] + block + rest[insert_at:])


def move_to_end(guests: List[Guest], guest_id: str) -> Optional[List[Guest]]:
    """Ordering with ``guest_id`` last, or None when it is missing or already last"""
    index = next((i for i, guest in enumerate(guests) if guest["id"] == guest_id), -1)
    if index == -1 or index == len(guests) - 1:
        return None
    return resequence(guests[:index] + guests[index + 1:] + [guests[index]])


def apply_order(guests: List[Guest], guest_ids: List[str]) -> List[Guest]:
    """Listed guests first in the given order, then the rest in their current order"""
    by_id = {guest["id"]: guest for guest in guests}
    ordered = []
    seen = set()
    for guest_id in guest_ids:
        if guest_id in by_id and guest_id not in seen:
            ordered.append(by_id[guest_id])
            seen.add(guest_id)
    ordered.extend(guest for guest in guests if guest["id"] not in seen)
    return resequence(ordered)
