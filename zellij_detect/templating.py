from __future__ import annotations

from typing import Any, Dict


def render(template: str, context: Dict[str, Any]) -> str:
    """Replace {{placeholders}} in a text template with context values.

    Unknown placeholders are left in place; shell ``${...}`` syntax is untouched.
    """
    out = template
    for k, v in context.items():
        if isinstance(v, (str, int, float)):
            out = out.replace("{{" + k + "}}", str(v))
    return out
