"""Template variable resolution."""

from automation_engine.template.resolver import TemplateResolver, render_template

__all__ = ["TemplateResolver", "render_template"]
