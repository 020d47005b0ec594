"""
Template rendering with literal placeholders.

Templates only contain {{ name }} placeholders. Conditional content is
assembled by the caller into substitution values, so rendering is a pure
function of (template, substitutions).

Example:
    render("ServerName {{ site_name }}\\n", {"site_name": "moodle.example.com"})
"""

import re
from typing import Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateNotFound, meta
from jinja2.exceptions import TemplateSyntaxError, UndefinedError

from laemp.core.errors import TemplateError

_PLACEHOLDER = re.compile(r"{{(.*?)}}", re.DOTALL)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_env = Environment(
    loader=PackageLoader("laemp", "templates"),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def _check_literal(source: str, name: str) -> None:
    if "{%" in source or "{#" in source:
        raise TemplateError(f"Template {name} uses control flow; only {{{{ placeholders }}}} are allowed")

    for expr in _PLACEHOLDER.findall(source):
        if not _IDENTIFIER.match(expr.strip()):
            raise TemplateError(f"Template {name} has a non-literal placeholder: {{{{{expr}}}}}")


def render(template: str, substitutions: Dict[str, str], name: str = "<string>") -> str:
    """
    Substitute named placeholders into a template string.

    Args:
        template: Template text with {{ name }} placeholders
        substitutions: Placeholder values (strings)
        name: Template name for error messages

    Raises:
        TemplateError: on control flow, non-literal placeholders,
            missing substitutions or non-string values
    """
    _check_literal(template, name)

    for key, value in substitutions.items():
        if not isinstance(value, str):
            raise TemplateError(f"Substitution {key!r} for {name} must be a string")

    try:
        ast = _env.parse(template)
    except TemplateSyntaxError as e:
        raise TemplateError(f"Template {name} is malformed: {e}") from e

    missing = meta.find_undeclared_variables(ast) - set(substitutions)
    if missing:
        raise TemplateError(f"Template {name} is missing substitutions: {', '.join(sorted(missing))}")

    try:
        return _env.from_string(template).render(**substitutions)
    except UndefinedError as e:
        raise TemplateError(f"Template {name}: {e}") from e


def load_template(name: str) -> str:
    """Source of a bundled template."""
    try:
        source, _, _ = _env.loader.get_source(_env, name)
    except TemplateNotFound:
        raise TemplateError(f"Unknown template: {name}") from None
    return source


def render_resource(name: str, substitutions: Dict[str, str]) -> str:
    """Render a template shipped in laemp/templates."""
    return render(load_template(name), substitutions, name=name)
