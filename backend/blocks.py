# blocks.py — Block content schemas
# Block.content is stored as free JSON; its shape is selected by Block.type.
# Every read goes through parse_block_content(), which first upgrades legacy
# shapes and then validates against the schema registered for the type.

import html
import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models import BlockType

logger = logging.getLogger("clientspace.blocks")


# ============================================================
# CONTENT SCHEMAS
# ============================================================

class BlockContent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class GenericContent(BlockContent):
    """Informational blocks (media, embed, contact, accordion, ...)."""


class TextContent(BlockContent):
    html: str = "<p></p>"


class FormQuestion(BlockContent):
    id: str
    label: str = ""
    type: str = "text"  # text | textarea | select | multiselect | date
    options: List[str] = Field(default_factory=list)
    required: bool = False


class FormContent(BlockContent):
    title: Optional[str] = None
    description: Optional[str] = None
    questions: List[FormQuestion] = Field(default_factory=list)


class TaskItem(BlockContent):
    id: str
    title: str = ""
    description: Optional[str] = None
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    assignee: Optional[Dict[str, Any]] = None


class TaskContent(BlockContent):
    title: Optional[str] = None
    tasks: List[TaskItem] = Field(default_factory=list)


class Milestone(BlockContent):
    id: str
    title: str = ""
    description: Optional[str] = None
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    sort_order: int = Field(default=0, alias="sortOrder")
    tasks: List[TaskItem] = Field(default_factory=list)


class ActionPlanContent(BlockContent):
    title: Optional[str] = None
    description: Optional[str] = None
    milestones: List[Milestone] = Field(default_factory=list)
    permissions: Optional[Dict[str, bool]] = None


class FileUploadContent(BlockContent):
    title: Optional[str] = None
    description: Optional[str] = None


class ChecklistItem(BlockContent):
    id: str
    label: str = ""


class ChecklistContent(BlockContent):
    title: Optional[str] = None
    items: List[ChecklistItem] = Field(default_factory=list)


CONTENT_MODELS: Dict[str, Type[BlockContent]] = {
    BlockType.TEXT.value: TextContent,
    BlockType.FORM.value: FormContent,
    BlockType.TASK.value: TaskContent,
    BlockType.ACTION_PLAN.value: ActionPlanContent,
    BlockType.FILE_UPLOAD.value: FileUploadContent,
    BlockType.CHECKLIST.value: ChecklistContent,
}

_HEADING_TAGS = {"h1", "h2", "h3"}


# ============================================================
# LEGACY UPGRADES (read boundary)
# ============================================================

def _upgrade_text(raw: Dict[str, Any]) -> Dict[str, Any]:
    # Old text blocks were {"variant": "h1|h2|h3|p", "text": "..."}
    if "html" in raw or "text" not in raw:
        return raw
    upgraded = {k: v for k, v in raw.items() if k not in ("variant", "text")}
    tag = raw.get("variant") if raw.get("variant") in _HEADING_TAGS else "p"
    upgraded["html"] = f"<{tag}>{html.escape(str(raw.get('text') or ''))}</{tag}>"
    return upgraded


def _upgrade_checklist(raw: Dict[str, Any]) -> Dict[str, Any]:
    items = []
    for index, item in enumerate(raw.get("items") or []):
        if isinstance(item, str):
            items.append({"id": f"item-{index}", "label": item})
        elif isinstance(item, dict):
            items.append({**item, "id": item.get("id") or f"item-{index}"})
    return {**raw, "items": items}


_CONTENT_UPGRADES = {
    BlockType.TEXT.value: _upgrade_text,
    BlockType.CHECKLIST.value: _upgrade_checklist,
}


def upgrade_content(block_type: str, raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    upgrade = _CONTENT_UPGRADES.get(block_type)
    return upgrade(raw) if upgrade else dict(raw)


def upgrade_response_value(block_type: str, value: Any) -> Any:
    """Checklist responses used to store ticked ids under `checked_items`."""
    if block_type == BlockType.CHECKLIST.value and isinstance(value, dict) and "checked" not in value:
        if "checked_items" in value:
            upgraded = {k: v for k, v in value.items() if k != "checked_items"}
            upgraded["checked"] = value["checked_items"]
            return upgraded
    return value


def parse_block_content(block_type: str, raw: Any) -> BlockContent:
    data = upgrade_content(block_type, raw)
    model = CONTENT_MODELS.get(block_type, GenericContent)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning(f"Block content for type {block_type!r} failed validation, serving as-is: {exc}")
        return GenericContent.model_validate(data)


def dump_content(content: BlockContent) -> Dict[str, Any]:
    return content.model_dump(by_alias=True, exclude_none=True)


# ============================================================
# SUB-ENTITY EXTRACTION
# ============================================================

def iter_tasks(content: BlockContent) -> List[Tuple[TaskItem, Optional[Milestone]]]:
    """Every task a task or action-plan block holds, with its milestone (if any)."""
    if isinstance(content, TaskContent):
        return [(task, None) for task in content.tasks]
    if isinstance(content, ActionPlanContent):
        milestones = sorted(content.milestones, key=lambda m: m.sort_order)
        return [(task, milestone) for milestone in milestones for task in milestone.tasks]
    return []


def find_task(content: BlockContent, task_id: str) -> Optional[TaskItem]:
    for task, _milestone in iter_tasks(content):
        if task.id == task_id:
            return task
    return None


def content_title(content: BlockContent) -> Optional[str]:
    return getattr(content, "title", None)
