"""
Prompt construction

Jinja2 templates live under ``prompts/<name>/<version>/template.jinja2``
with a ``meta.yaml`` beside them. ``build_analysis_prompt`` is the one
place the analysis prompt is assembled, whichever LLM provider is used.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Sequence

import jinja2
import yaml

from .models import Alert, FeedbackRecord

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path(__file__).parent / "prompts"

FEEDBACK_INSTRUCTION = (
    " Apply lessons from past feedback - use similar patterns if applicable."
)


class PromptManager:
    """Manages Jinja2 templates for LLM prompts"""

    def __init__(self, prompts_dir: Optional[str] = None):
        self.prompts_dir = Path(prompts_dir) if prompts_dir else DEFAULT_PROMPTS_DIR
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
            autoescape=False,
            undefined=jinja2.StrictUndefined,
        )

    def get_template(self, template_path: str) -> jinja2.Template:
        """Get Jinja2 template by path (e.g., 'analysis/v1/template.jinja2')"""
        try:
            return self.env.get_template(template_path)
        except jinja2.TemplateNotFound:
            logger.error(f"Template not found: {template_path}")
            raise

    def load_template_meta(self, template_key: str) -> dict[str, Any]:
        """Load template metadata (e.g., 'analysis:v1' -> meta.yaml)"""
        template_name, version = template_key.split(":")
        meta_path = self.prompts_dir / template_name / version / "meta.yaml"

        if not meta_path.exists():
            logger.warning(f"Template metadata not found: {meta_path}")
            return {}

        with open(meta_path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def render_template(self, template_key: str, context: dict[str, Any]) -> str:
        template_name, version = template_key.split(":")
        template = self.get_template(f"{template_name}/{version}/template.jinja2")
        return template.render(**context)


_default_manager: Optional[PromptManager] = None


def get_prompt_manager() -> PromptManager:
    """Prompt manager over the packaged templates"""
    global _default_manager
    if _default_manager is None:
        _default_manager = PromptManager()
    return _default_manager


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def format_feedback_context(past_feedback: Sequence[FeedbackRecord]) -> str:
    """Compact PAST FEEDBACK block, empty when there is no feedback"""
    if not past_feedback:
        return ""

    lines = ["\n=== PAST FEEDBACK ===\n"]
    for i, fb in enumerate(past_feedback, start=1):
        status = "✅ CORRECT" if fb.is_correct else "❌ WRONG"
        lines.append(
            f"{i}. {fb.alert_name} ({fb.category}): {status} - "
            f"{_truncate(fb.analysis, 200)}\n"
        )
    lines.append("\n")
    return "".join(lines)


def build_analysis_prompt(
    debug_info: str,
    past_feedback: Sequence[FeedbackRecord] = (),
    *,
    custom_template: Optional[str] = None,
    template_key: str = "analysis:v1",
    prompt_manager: Optional[PromptManager] = None,
) -> str:
    """
    Assemble the root cause analysis prompt

    Args:
        debug_info: Diagnostics blob, included verbatim at the end
        past_feedback: Relevant human judgments on earlier analyses
        custom_template: Raw override using the {FEEDBACK_CONTEXT},
            {FEEDBACK_INSTRUCTION} and {DEBUG_INFO} placeholders
        template_key: Packaged Jinja2 template to use otherwise
        prompt_manager: Template source, the packaged templates by default
    """
    feedback_context = format_feedback_context(past_feedback)
    feedback_instruction = FEEDBACK_INSTRUCTION if past_feedback else ""

    if custom_template:
        return (
            custom_template.replace("{FEEDBACK_CONTEXT}", feedback_context)
            .replace("{FEEDBACK_INSTRUCTION}", feedback_instruction)
            .replace("{DEBUG_INFO}", debug_info)
        )

    manager = prompt_manager or get_prompt_manager()
    return manager.render_template(
        template_key,
        {
            "feedback_context": feedback_context,
            "feedback_instruction": feedback_instruction,
            "debug_info": debug_info,
        },
    )


def build_categorize_prompt(
    alert: Alert,
    *,
    template_key: str = "categorize:v1",
    prompt_manager: Optional[PromptManager] = None,
) -> str:
    manager = prompt_manager or get_prompt_manager()
    return manager.render_template(
        template_key,
        {
            "alert_name": alert.name,
            "severity": alert.severity,
            "summary": alert.summary,
            "description": alert.description,
        },
    )
