"""Standard checklist used when an intervention is created without explicit steps."""

from __future__ import annotations

from .. import schemas

# purpose: provide the default four-step PPF checklist for new interventions
# status: production

_PPF_STEPS: tuple[dict[str, object], ...] = (
    {
        "step_name": "Vehicle inspection",
        "step_type": "inspection",
        "description": "Inspect the vehicle and document its condition before work starts",
        "min_photos_required": 4,
        "max_photos_allowed": 10,
        "estimated_duration_seconds": 900,
        "quality_checkpoints": [
            "Surface cleanliness verified",
            "Existing damage documented",
            "Measurements taken",
        ],
    },
    {
        "step_name": "Surface preparation",
        "step_type": "preparation",
        "description": "Clean, decontaminate and prepare the surfaces and film patterns",
        "min_photos_required": 2,
        "max_photos_allowed": 8,
        "estimated_duration_seconds": 1800,
        "quality_checkpoints": [
            "Vehicle cleaned and decontaminated",
            "Film patterns prepared",
            "Work area ready",
        ],
    },
    {
        "step_name": "Film installation",
        "step_type": "installation",
        "description": "Apply the protection film zone by zone",
        "min_photos_required": 6,
        "max_photos_allowed": 15,
        "estimated_duration_seconds": 3600,
        "quality_checkpoints": [
            "Film applied without bubbles",
            "Edges properly sealed",
            "No contamination under film",
        ],
    },
    {
        "step_name": "Final inspection",
        "step_type": "finalization",
        "description": "Final inspection and quality control with the customer",
        "min_photos_required": 4,
        "max_photos_allowed": 10,
        "estimated_duration_seconds": 900,
        "quality_checkpoints": [
            "Final quality inspection passed",
            "Customer walkthrough completed",
            "Documentation complete",
        ],
    },
)


def default_step_definitions() -> list[schemas.StepDefinition]:
    """Return fresh step definitions; every template step is mandatory and photographed."""

    return [
        schemas.StepDefinition(is_mandatory=True, requires_photos=True, **definition)
        for definition in _PPF_STEPS
    ]
