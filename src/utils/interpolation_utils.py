"""
Template interpolation for outbound flow texts.
"""
import json
import re
from typing import Any, Dict, Optional

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

# Identifiers resolved from the conversation itself rather than from flow variables
CONTEXT_IDENTIFIERS = ("contact_name", "phone")


def stringify_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def interpolate(
    template: Optional[str],
    variables: Optional[Dict[str, Any]],
    contact_name: Optional[str] = None,
    phone: Optional[str] = None
) -> str:
    """
    Replace every {{identifier}} in the template.

    contact_name and phone always resolve (explicit argument, then the
    variable bag, then an empty string). Any other identifier is looked up
    in variables; unknown identifiers are left untouched so missing
    variables stay visible in the sent text.
    """
    if not template:
        return ""
    variables = variables or {}
    fixed_context = {"contact_name": contact_name, "phone": phone}

    def _replace(match: "re.Match[str]") -> str:
        identifier = match.group(1)
        if identifier in CONTEXT_IDENTIFIERS:
            value = fixed_context[identifier]
            if value is None:
                value = variables.get(identifier)
            return "" if value is None else stringify_value(value)
        if identifier in variables and variables[identifier] is not None:
            return stringify_value(variables[identifier])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, template)
