# tests/test_blocks.py — Block content schemas and legacy upgrades
from blocks import (
    ActionPlanContent, ChecklistContent, FormContent, GenericContent, TaskContent, TextContent,
    dump_content, find_task, iter_tasks, parse_block_content, upgrade_response_value,
)


class TestParse:
    def test_form_questions(self):
        content = parse_block_content("form", {
            "title": "Kickoff",
            "questions": [{"id": "Q1", "label": "Company?", "type": "text"}],
        })
        assert isinstance(content, FormContent)
        assert content.title == "Kickoff"
        assert content.questions[0].id == "Q1"

    def test_unknown_fields_survive(self):
        content = parse_block_content("media", {"url": "https://example.com/a.png", "caption": "Logo"})
        assert isinstance(content, GenericContent)
        assert dump_content(content) == {"url": "https://example.com/a.png", "caption": "Logo"}

    def test_action_plan_milestones(self):
        content = parse_block_content("action_plan", {
            "milestones": [
                {"id": "M2", "title": "Launch", "sortOrder": 2, "tasks": [{"id": "T3", "title": "Go live"}]},
                {"id": "M1", "title": "Setup", "sortOrder": 1, "tasks": [
                    {"id": "T1", "title": "Accounts", "dueDate": "2026-11-01"},
                    {"id": "T2", "title": "Data"},
                ]},
            ],
        })
        assert isinstance(content, ActionPlanContent)
        assert [task.id for task, _ in iter_tasks(content)] == ["T1", "T2", "T3"]
        assert find_task(content, "T1").due_date == "2026-11-01"
        assert find_task(content, "missing") is None

    def test_due_date_keeps_wire_alias(self):
        content = parse_block_content("task", {"tasks": [{"id": "T1", "title": "Sign", "dueDate": "2026-12-01"}]})
        assert isinstance(content, TaskContent)
        assert dump_content(content)["tasks"][0]["dueDate"] == "2026-12-01"

    def test_malformed_content_is_served_as_is(self):
        content = parse_block_content("task", {"tasks": [{"title": "no id"}]})
        assert isinstance(content, GenericContent)
        assert iter_tasks(content) == []

    def test_non_dict_content_is_empty(self):
        content = parse_block_content("form", None)
        assert isinstance(content, FormContent)
        assert content.questions == []


class TestLegacyUpgrades:
    def test_text_variant_becomes_html(self):
        content = parse_block_content("text", {"variant": "h2", "text": "Welcome"})
        assert isinstance(content, TextContent)
        assert content.html == "<h2>Welcome</h2>"
        assert "variant" not in dump_content(content)

    def test_text_is_escaped(self):
        content = parse_block_content("text", {"variant": "p", "text": "a < b & c"})
        assert content.html == "<p>a &lt; b &amp; c</p>"

    def test_unknown_variant_falls_back_to_paragraph(self):
        assert parse_block_content("text", {"variant": "marquee", "text": "x"}).html == "<p>x</p>"

    def test_html_content_untouched(self):
        assert parse_block_content("text", {"html": "<p>hi</p>"}).html == "<p>hi</p>"

    def test_checklist_string_items_get_ids(self):
        content = parse_block_content("checklist", {"items": ["Sign contract", {"label": "Pay"}, {"id": "x", "label": "Ship"}]})
        assert isinstance(content, ChecklistContent)
        assert [(i.id, i.label) for i in content.items] == [
            ("item-0", "Sign contract"), ("item-1", "Pay"), ("x", "Ship"),
        ]

    def test_checked_items_renamed(self):
        assert upgrade_response_value("checklist", {"checked_items": ["a"]}) == {"checked": ["a"]}
        assert upgrade_response_value("checklist", {"checked": ["b"]}) == {"checked": ["b"]}
        assert upgrade_response_value("form", {"checked_items": ["a"]}) == {"checked_items": ["a"]}
