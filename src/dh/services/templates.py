"""Jinja2 rendering for the configuration files dh generates."""

from typing import Any

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

jinja_env = Environment(
    loader=PackageLoader("dh", "templates"),
    autoescape=select_autoescape(),
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


def render_template(name: str, **context: Any) -> str:
    """Render a packaged template, always ending with a newline.

    sudoers and crontab files are rejected without a trailing newline.
    """
    content = jinja_env.get_template(name).render(**context)
    if not content.endswith("\n"):
        content += "\n"
    return content
