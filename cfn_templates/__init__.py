"""
CloudFormation templates, built as Python dicts.

Templates are rendered to JSON, which CloudFormation accepts as a
TemplateBody just like YAML.
"""
import json
from typing import Any, Callable, Dict

from .infrastructure_pipeline import build_infrastructure_pipeline_template
from .ui_pipeline import build_ui_pipeline_template
from .website import build_website_template

TEMPLATES: Dict[str, Callable[[], Dict[str, Any]]] = {
    "website": build_website_template,
    "infrastructure-pipeline": build_infrastructure_pipeline_template,
    "ui-pipeline": build_ui_pipeline_template,
}


def build_template(name: str) -> Dict[str, Any]:
    """
    Build a template by name.

    Raises:
        ValueError: If the name is not one of TEMPLATES
    """
    try:
        builder = TEMPLATES[name]
    except KeyError:
        raise ValueError(
            f"Unknown template {name!r}, expected one of {sorted(TEMPLATES)}"
        ) from None
    return builder()


def render(template: Dict[str, Any]) -> str:
    """Serialize a template dict to a TemplateBody string."""
    return json.dumps(template, indent=2)
