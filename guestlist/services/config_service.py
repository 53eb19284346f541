"""
Event-type presets and per-organization configuration helpers
"""

import copy
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from guestlist.core.exceptions import ValidationError
from guestlist.schemas.organization import EventConfiguration

_STANDARD_STAGES = [
    {"id": "invited", "label": "Invited", "order": 1},
    {"id": "confirmed", "label": "Confirmed", "order": 2},
    {"id": "declined", "label": "Declined", "order": 3},
]

_STANDARD_AGE_GROUPS = [
    {"id": "adult", "label": "Adult", "minAge": 18},
    {"id": "child", "label": "Child (7-17)", "minAge": 7},
    {"id": "infant", "label": "Infant (0-6)", "minAge": 0},
]

_STANDARD_FOOD_OPTIONS = [
    {"id": "none", "label": "No restrictions"},
    {"id": "vegetarian", "label": "Vegetarian"},
    {"id": "vegan", "label": "Vegan"},
    {"id": "gluten_free", "label": "Gluten-free"},
    {"id": "dairy_free", "label": "Dairy-free"},
]

EVENT_TYPE_PRESETS: Dict[str, Dict[str, Any]] = {
    "wedding": {
        "description": "Wedding guest list split by side of the family",
        "configuration": {
            "categories": [
                {"id": "bride", "label": "Bride's Side", "initial": "B", "color": "#EC4899"},
                {"id": "groom", "label": "Groom's Side", "initial": "G", "color": "#3B82F6"},
                {"id": "mutual", "label": "Mutual Friends", "initial": "M", "color": "#10B981"},
            ],
            "categoriesConfig": {"allowMultiple": False},
            "ageGroups": {"enabled": True, "groups": _STANDARD_AGE_GROUPS},
            "foodPreferences": {"enabled": True, "allowMultiple": True, "options": _STANDARD_FOOD_OPTIONS},
            "confirmationStages": {"enabled": True, "stages": _STANDARD_STAGES},
            "customFields": [],
        },
    },
    "birthday": {
        "description": "Birthday party with family and friends",
        "configuration": {
            "categories": [
                {"id": "family", "label": "Family", "initial": "F", "color": "#F59E0B"},
                {"id": "friends", "label": "Friends", "initial": "A", "color": "#8B5CF6"},
            ],
            "categoriesConfig": {"allowMultiple": False},
            "ageGroups": {"enabled": True, "groups": _STANDARD_AGE_GROUPS},
            "foodPreferences": {"enabled": False, "options": []},
            "confirmationStages": {"enabled": True, "stages": _STANDARD_STAGES},
            "customFields": [],
        },
    },
    "corporate": {
        "description": "Corporate event with attendees grouped by company role",
        "configuration": {
            "categories": [
                {"id": "employee", "label": "Employee", "initial": "E", "color": "#0EA5E9"},
                {"id": "client", "label": "Client", "initial": "C", "color": "#22C55E"},
                {"id": "partner", "label": "Partner", "initial": "P", "color": "#6366F1"},
            ],
            "categoriesConfig": {"allowMultiple": False},
            "ageGroups": {"enabled": False, "groups": []},
            "foodPreferences": {"enabled": True, "allowMultiple": True, "options": _STANDARD_FOOD_OPTIONS},
            "confirmationStages": {"enabled": True, "stages": _STANDARD_STAGES},
            "customFields": [],
        },
    },
}


def list_presets() -> List[Dict[str, Any]]:
    """Presets sorted by name, as served to clients"""
    return [
        {"name": name, "description": preset["description"], "default_config": copy.deepcopy(preset["configuration"])}
        for name, preset in sorted(EVENT_TYPE_PRESETS.items())
    ]


def get_preset_configuration(event_type: str) -> Dict[str, Any]:
    preset = EVENT_TYPE_PRESETS.get(event_type)
    if preset is None:
        raise ValidationError(f"Unknown event type: {event_type}")
    return copy.deepcopy(preset["configuration"])


def merge_configuration(base: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay a partial configuration onto a complete one.

    Lists are replaced wholesale; the ``enabled``/``allowMultiple`` flags of a
    feature block may be overridden without resending its items.
    """
    if not overrides:
        return copy.deepcopy(base)

    merged = copy.deepcopy(base)
    for key in ("categories", "categoriesConfig", "customFields"):
        if overrides.get(key):
            merged[key] = copy.deepcopy(overrides[key])

    for block, items_key in (("ageGroups", "groups"), ("foodPreferences", "options"), ("confirmationStages", "stages")):
        override = overrides.get(block) or {}
        target = merged.setdefault(block, {"enabled": False, items_key: []})
        if override.get("enabled") is not None:
            target["enabled"] = override["enabled"]
        if block == "foodPreferences" and override.get("allowMultiple") is not None:
            target["allowMultiple"] = override["allowMultiple"]
        if override.get(items_key):
            target[items_key] = copy.deepcopy(override[items_key])

    merged.setdefault("customFields", [])
    return merged


def validate_configuration(configuration: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a configuration and return its normalized form"""
    try:
        model = EventConfiguration.model_validate(configuration)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
            for err in e.errors()
        ]
        raise ValidationError("Invalid event configuration", details=details)
    return model.model_dump(exclude_none=True)


def guest_defaults(configuration: Dict[str, Any]) -> Dict[str, Any]:
    """Field values a new guest gets when the caller leaves them out"""
    categories = configuration.get("categories") or []
    age_groups = configuration.get("ageGroups") or {}
    food = configuration.get("foodPreferences") or {}
    stages = configuration.get("confirmationStages") or {}

    defaults: Dict[str, Any] = {
        "categories": [categories[0]["id"]] if categories else [],
        "age_group": None,
        "food_preference": None,
        "food_preferences": [],
        "confirmation_stage": "invited",
    }
    if age_groups.get("enabled") and age_groups.get("groups"):
        defaults["age_group"] = age_groups["groups"][0]["id"]
    if food.get("enabled") and food.get("options"):
        defaults["food_preference"] = food["options"][0]["id"]
        defaults["food_preferences"] = [food["options"][0]["id"]]
    if stages.get("enabled") and stages.get("stages"):
        defaults["confirmation_stage"] = stages["stages"][0]["id"]
    return defaults
