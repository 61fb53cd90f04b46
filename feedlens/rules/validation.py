"""
Rule draft validation used before a rule is saved.

The engine itself never raises on bad conditions; this module is the strict
counterpart for the authoring path.
"""

import re
from typing import Any

from ..database.models import (
    RULE_FIELDS,
    RULE_OPERATORS,
    AddTagAction,
    AssignCategoryAction,
    RemoveTagAction,
    RuleDraft,
)
from ..utils.exceptions import ValidationError, ErrorCode

_NUMERIC_OPERATORS = {"gt", "lt"}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def validate_rule(draft: RuleDraft) -> None:
    """Reject drafts the engine could only evaluate as no-ops.

    Raises:
        ValidationError: Describing the first offending condition or action
    """
    for index, condition in enumerate(draft.conditions):
        where = f"conditions[{index}]"
        if condition.field not in RULE_FIELDS:
            raise ValidationError(
                f"{where}: unknown field {condition.field!r}",
                field_name="field",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            )
        if condition.operator not in RULE_OPERATORS:
            raise ValidationError(
                f"{where}: unknown operator {condition.operator!r}",
                field_name="operator",
            )
        if condition.operator == "matches":
            try:
                re.compile(str(condition.value))
            except re.error as e:
                raise ValidationError(
                    f"{where}: invalid regular expression: {e}", field_name="value"
                ) from e
        elif condition.operator == "in" and not isinstance(condition.value, list):
            raise ValidationError(f"{where}: 'in' requires a list value", field_name="value")
        elif condition.operator in _NUMERIC_OPERATORS and not _is_number(condition.value):
            raise ValidationError(
                f"{where}: '{condition.operator}' requires a numeric value",
                field_name="value",
            )

    for index, action in enumerate(draft.actions):
        where = f"actions[{index}]"
        if isinstance(action, AssignCategoryAction) and action.category_id is None:
            raise ValidationError(
                f"{where}: assignCategory requires categoryId",
                field_name="categoryId",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            )
        if isinstance(action, (AddTagAction, RemoveTagAction)) and not action.tag:
            raise ValidationError(
                f"{where}: {action.type} requires tag",
                field_name="tag",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            )
