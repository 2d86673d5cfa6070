# composite_keys.py — Addressing sub-entities inside a block's single response
"""
A block owns at most one response row, but forms hold many questions and
task lists / action plans hold many tasks. Each of those is addressed by a
``SubEntityRef(block_id, sub_id)``.

The pair stays structured inside the service. It is only flattened to the
``"<block_id>-<sub_id>"`` string form when building payloads for the
presentation layer, which keys its maps that way. Both halves are usually
UUIDs (which contain hyphens themselves), so the flat form is never parsed
back; callers always send block id and sub id separately.
"""

from typing import Any, Dict, NamedTuple, Optional

QUESTIONS_CONTAINER = "questions"
TASKS_CONTAINER = "tasks"


class SubEntityRef(NamedTuple):
    block_id: str
    sub_id: Optional[str] = None

    @property
    def key(self) -> str:
        if self.sub_id is None:
            return self.block_id
        return f"{self.block_id}-{self.sub_id}"


def _container(value: Any, name: str) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict) and isinstance(value.get(name), dict):
        return value[name]
    return None


def expand_answers(block_id: str, value: Any) -> Dict[SubEntityRef, Any]:
    """Questions map -> one entry per question; anything else is the whole-block answer."""
    questions = _container(value, QUESTIONS_CONTAINER)
    if questions is not None:
        return {SubEntityRef(block_id, question_id): answer for question_id, answer in questions.items()}
    return {SubEntityRef(block_id): value}


def expand_task_statuses(block_id: str, value: Any) -> Dict[SubEntityRef, str]:
    tasks = _container(value, TASKS_CONTAINER)
    if tasks is None:
        return {}
    return {SubEntityRef(block_id, task_id): status for task_id, status in tasks.items()}


def flatten(mapping: Dict[SubEntityRef, Any]) -> Dict[str, Any]:
    return {ref.key: item for ref, item in mapping.items()}


def merge_sub_entity(value: Any, container: str, sub_id: str, sub_value: Any) -> Dict[str, Any]:
    """
    Partial merge of one sub-entity into an existing response value.

    Returns a new dict (the stored JSON is not mutation-tracked) with
    ``container[sub_id]`` set and every sibling key preserved. A legacy
    non-dict value is replaced by a fresh map.
    """
    merged = dict(value) if isinstance(value, dict) else {}
    existing = merged.get(container)
    inner = dict(existing) if isinstance(existing, dict) else {}
    inner[sub_id] = sub_value
    merged[container] = inner
    return merged


def read_sub_entity(value: Any, container: str, sub_id: str) -> Any:
    inner = _container(value, container)
    return inner.get(sub_id) if inner is not None else None
