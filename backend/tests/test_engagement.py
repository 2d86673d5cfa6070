# tests/test_engagement.py — Engagement scoring and caching
from datetime import timedelta

import pytest

from engagement import (
    EngagementPolicy, compute_engagement, engagement_level, get_engagement, ratio_factor, visit_points,
)
from errors import NotFoundError
from models import ActivityLogEntry, BlockFile, EngagementLevel, Response, utcnow

POLICY = EngagementPolicy()


def visit(space_id, days_ago=0, action="portal.visit"):
    return ActivityLogEntry(
        space_id=space_id, actor_email="alice@x.com", action=action,
        created_at=utcnow() - timedelta(days=days_ago),
    )


class TestFactors:
    def test_visit_bands(self):
        assert [visit_points(n) for n in (0, 1, 2, 3, 4, 6, 7, 50)] == [0, 5, 10, 10, 15, 15, 20, 20]

    def test_empty_ratio_contributes_nothing(self):
        factor = ratio_factor(0, 0, 25)
        assert factor.score == 0 and factor.max == 25

    def test_ratio_is_weighted(self):
        assert ratio_factor(1, 2, 25).score == 12.5
        assert ratio_factor(3, 3, 15).score == 15

    def test_levels(self):
        assert engagement_level(80, True, POLICY) == EngagementLevel.HIGH
        assert engagement_level(75, True, POLICY) == EngagementLevel.HIGH
        assert engagement_level(40, True, POLICY) == EngagementLevel.MEDIUM
        assert engagement_level(39, True, POLICY) == EngagementLevel.LOW
        assert engagement_level(0, True, POLICY) == EngagementLevel.NONE
        assert engagement_level(20, False, POLICY) == EngagementLevel.NONE

    def test_custom_thresholds(self):
        policy = EngagementPolicy(high_threshold=50, medium_threshold=10)
        assert engagement_level(50, True, policy) == EngagementLevel.HIGH
        assert engagement_level(10, True, policy) == EngagementLevel.MEDIUM


@pytest.mark.asyncio
class TestCompute:
    async def test_visits_alone_are_not_engagement(self, db_session, spaces):
        space = await spaces.space()
        db_session.add_all([visit(space.id) for _ in range(3)])
        await db_session.commit()

        result = await compute_engagement(db_session, space.id, POLICY)
        assert result.factors["visits"].score == 10
        assert result.score == 10
        assert result.level == EngagementLevel.NONE

    async def test_full_engagement(self, db_session, spaces):
        space = await spaces.space()
        page = await spaces.page(space, "work")
        tasks = await spaces.block(page, "task", {"tasks": [{"id": "A"}]})
        form = await spaces.block(page, "form", {"questions": [{"id": "Q1"}]})
        upload = await spaces.block(page, "file_upload", {})
        checklist = await spaces.block(page, "checklist", {"items": ["One", "Two"]})
        db_session.add_all([
            Response(block_id=tasks.id, value={"tasks": {"A": "completed"}}),
            Response(block_id=form.id, value={"questions": {"Q1": {"text": "yes"}}}),
            Response(block_id=checklist.id, value={"checked_items": ["item-0", "item-1"]}),
            BlockFile(block_id=upload.id, space_id=space.id, original_name="a", storage_path="s"),
        ] + [visit(space.id) for _ in range(7)])
        await db_session.commit()

        result = await compute_engagement(db_session, space.id, POLICY)
        assert result.score == 100
        assert result.level == EngagementLevel.HIGH
        assert result.factors["checklists"].done == 2

    async def test_partial_completion_scores_each_factor_by_ratio(self, db_session, spaces):
        space = await spaces.space()
        page = await spaces.page(space, "work")
        tasks = await spaces.block(page, "task", {"tasks": [{"id": t} for t in "ABCD"]})
        form = await spaces.block(page, "form", {"questions": [{"id": f"Q{n}"} for n in range(1, 5)]})
        uploads = [await spaces.block(page, "file_upload", {}) for _ in range(3)]
        checklist = await spaces.block(page, "checklist", {"items": ["One", "Two", "Three"]})
        db_session.add_all([
            Response(block_id=tasks.id, value={"tasks": {"A": "completed", "B": "pending"}}),
            Response(block_id=form.id, value={"questions": {
                "Q1": {"text": "yes"}, "Q2": {"selected": ["b"]}, "Q3": {"text": "  "},
            }}),
            Response(block_id=checklist.id, value={"checked": ["item-0"]}),
            BlockFile(block_id=uploads[0].id, space_id=space.id, original_name="a", storage_path="s"),
        ])
        await db_session.commit()

        result = await compute_engagement(db_session, space.id, POLICY)
        factors = result.factors
        assert (factors["tasks"].done, factors["tasks"].total, factors["tasks"].score) == (1, 4, 6.25)
        assert (factors["questions"].done, factors["questions"].total, factors["questions"].score) == (2, 4, 12.5)
        assert (factors["files"].done, factors["files"].total, factors["files"].score) == (1, 3, 5.0)
        assert (factors["checklists"].done, factors["checklists"].total, factors["checklists"].score) == (1, 3, 5.0)
        assert result.score == 29
        assert result.level == EngagementLevel.LOW

    async def test_single_completed_task_of_four(self, db_session, spaces):
        space = await spaces.space()
        page = await spaces.page(space, "work")
        tasks = await spaces.block(page, "task", {"tasks": [{"id": t} for t in "ABCD"]})
        db_session.add(Response(block_id=tasks.id, value={"tasks": {"A": "completed"}}))
        await db_session.commit()

        result = await compute_engagement(db_session, space.id, POLICY)
        assert result.factors["tasks"].score == 6.25
        assert (result.factors["tasks"].done, result.factors["tasks"].total) == (1, 4)
        assert result.score == 6
        assert result.level == EngagementLevel.LOW

    async def test_old_visits_and_other_actions_ignored(self, db_session, spaces):
        space = await spaces.space()
        page = await spaces.page(space, "work")
        await spaces.block(page, "task", {"tasks": [{"id": "A"}]})
        db_session.add_all([
            visit(space.id, days_ago=30),
            visit(space.id, action="page.viewed"),
            visit(space.id, action="portal.first_visit"),
        ])
        await db_session.commit()

        result = await compute_engagement(db_session, space.id, POLICY)
        assert result.factors["visits"].done == 1
        assert result.score == 5
        assert result.level == EngagementLevel.LOW


@pytest.mark.asyncio
class TestCache:
    async def test_result_is_cached_on_space(self, db_session, spaces):
        space = await spaces.space()
        page = await spaces.page(space, "work")
        await spaces.block(page, "task", {"tasks": [{"id": "A"}]})

        first = await get_engagement(db_session, space.id, POLICY)
        assert not first.cached
        await db_session.refresh(space)
        assert space.engagement_score == first.score

        db_session.add_all([visit(space.id) for _ in range(7)])
        await db_session.commit()
        second = await get_engagement(db_session, space.id, POLICY)
        assert second.cached
        assert second.score == first.score

    async def test_stale_cache_is_recomputed(self, db_session, spaces):
        space = await spaces.space()
        await get_engagement(db_session, space.id, POLICY)
        db_session.add_all([visit(space.id) for _ in range(7)])
        await db_session.commit()

        result = await get_engagement(db_session, space.id, EngagementPolicy(stale_after=timedelta(0)))
        assert not result.cached
        assert result.factors["visits"].score == 20

    async def test_missing_space(self, db_session):
        with pytest.raises(NotFoundError):
            await get_engagement(db_session, "nope", POLICY)
