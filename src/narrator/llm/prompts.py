from __future__ import annotations

from jinja2 import Template

from narrator.config import CONFIG_DIR


def load_prompt(name: str, **kwargs) -> str:
    """Render config/prompts/{name}.md with kwargs, trimming blank template lines."""
    path = CONFIG_DIR / "prompts" / f"{name}.md"
    template = Template(path.read_text(), trim_blocks=True, lstrip_blocks=True)
    return template.render(**kwargs).strip()
