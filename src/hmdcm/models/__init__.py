from hmdcm.models.constraints import TestFormDesign, nondecreasing_mask
from hmdcm.models.groups import (
    ItemGroups,
    build_item_groups,
    build_occasion_groups,
    group_matrix,
    resolve_measurement_model,
)
from hmdcm.models.hmdcm import HiddenMarkovDCM
from hmdcm.models.patterns import (
    attribute_patterns,
    pattern_index,
    pattern_labels,
)

__all__ = [
    # Model
    "HiddenMarkovDCM",
    # Attribute patterns
    "attribute_patterns",
    "pattern_index",
    "pattern_labels",
    # Response groups
    "ItemGroups",
    "build_item_groups",
    "build_occasion_groups",
    "group_matrix",
    "resolve_measurement_model",
    # Constraints
    "nondecreasing_mask",
    "TestFormDesign",
]
