"""
Tests for the repository facade and the soft-delete query filter.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from persistence_pipeline.schemas import FullAuditedEntityDto, Paginate
from persistence_pipeline.services.query import INCLUDE_DELETED
from persistence_pipeline.services.repository import Repository
from sample_models import Blog, Post, PostDetail, Tag
from shared.utils.exceptions import IntegrityPolicyViolation


@pytest.fixture
def tag_repo(uow):
    return Repository(Tag, uow)


@pytest.fixture
def seed_tags(tag_repo):
    tags = tag_repo.add_range([Tag(label=f"tag-{i}") for i in range(5)], save_immediately=True)
    return tags


class TestQueries:

    def test_find_by_id_and_get(self, tag_repo, seed_tags):
        first = seed_tags[0]

        assert tag_repo.find_by_id(first.id) is first
        assert tag_repo.get(Tag.label == "tag-3").label == "tag-3"
        assert tag_repo.get(Tag.label == "missing") is None

    def test_any_and_count(self, tag_repo, seed_tags):
        assert tag_repo.count() == 5
        assert tag_repo.count(Tag.label.in_(["tag-0", "tag-1"])) == 2
        assert tag_repo.any(Tag.label == "tag-4")
        assert not tag_repo.any(Tag.label == "nope")

    def test_with_eager_loading(self, uow):
        blog_repo = Repository(Blog, uow)
        blog_repo.add(Blog(name="b", posts=[Post(title="p")]), save_immediately=True)

        blog = blog_repo.get(Blog.name == "b", options=[selectinload(Blog.posts)])

        assert [p.title for p in blog.posts] == ["p"]

    def test_untracked_read_is_detached(self, tag_repo, seed_tags, db_session):
        tag_id = seed_tags[0].id
        db_session.expunge_all()

        tag = tag_repo.find_by_id(tag_id, tracking=False)
        tag.label = "ignored"
        tag_repo.save_changes()

        assert tag not in db_session
        assert tag_repo.get(Tag.id == tag_id).label == "tag-0"

    def test_untracked_page_detaches_eager_loads(self, uow, db_session):
        blog_repo = Repository(Blog, uow)
        blog_repo.add(Blog(name="b", posts=[Post(title="p")]), save_immediately=True)
        db_session.expunge_all()

        page = blog_repo.get_list(options=[selectinload(Blog.posts)], tracking=False)

        blog = page.items[0]
        assert blog not in db_session
        assert [p.title for p in blog.posts] == ["p"]
        assert blog.posts[0] not in db_session

    def test_untracked_read_keeps_tracked_entity_attached(self, tag_repo, seed_tags, db_session):
        first = seed_tags[0]

        assert tag_repo.find_by_id(first.id, tracking=False) is first
        assert first in db_session


class TestPagination:

    def test_middle_page(self, tag_repo, seed_tags):
        page = tag_repo.get_list(order_by=Tag.id, index=1, size=2)

        assert isinstance(page, Paginate)
        assert page.count == 5
        assert page.pages == 3
        assert [t.label for t in page.items] == ["tag-2", "tag-3"]
        assert page.has_previous
        assert page.has_next

    def test_last_page(self, tag_repo, seed_tags):
        page = tag_repo.get_list(order_by=[Tag.id], index=2, size=2)

        assert [t.label for t in page.items] == ["tag-4"]
        assert page.has_previous
        assert not page.has_next

    def test_empty_result(self, tag_repo):
        page = tag_repo.get_list(index=0, size=10)

        assert page.count == 0
        assert page.pages == 0
        assert page.items == []
        assert not page.has_previous
        assert not page.has_next

    def test_criteria_applied_before_counting(self, tag_repo, seed_tags):
        page = tag_repo.get_list(Tag.label != "tag-0", size=10)

        assert page.count == 4
        assert page.pages == 1

    def test_invalid_size(self, tag_repo):
        with pytest.raises(ValueError):
            tag_repo.get_list(size=0)

    def test_serializes_computed_flags(self):
        page = Paginate.from_items(["a"], index=0, size=1, count=2)

        assert page.model_dump() == {
            "size": 1,
            "index": 0,
            "count": 2,
            "pages": 2,
            "items": ["a"],
            "has_previous": False,
            "has_next": True,
        }


class TestMutations:

    def test_add_stamps_on_save(self, tag_repo):
        tag = tag_repo.add(Tag(label="new"), save_immediately=True)

        assert tag.id is not None
        assert tag.creator_id is not None

    def test_add_waits_for_save_changes(self, tag_repo):
        tag = tag_repo.add(Tag(label="later"))

        assert tag.id is None
        result = tag_repo.save_changes(actor_id="batch")

        assert result.committed_count == 1
        assert tag.creator_id == "batch"

    def test_update_detached_entity(self, tag_repo, db_session):
        tag = tag_repo.add(Tag(label="before"), save_immediately=True)
        tag_id = tag.id
        db_session.expunge(tag)
        tag.label = "after"

        tag_repo.update(tag, save_immediately=True)

        reloaded = tag_repo.find_by_id(tag_id)
        assert reloaded.label == "after"
        assert reloaded.last_modification_time is not None

    def test_update_range(self, tag_repo, seed_tags):
        for tag in seed_tags[:2]:
            tag.label = tag.label.upper()

        tag_repo.update_range(seed_tags[:2], save_immediately=True)

        assert tag_repo.count(Tag.label.in_(["TAG-0", "TAG-1"])) == 2

    def test_delete_hides_from_queries(self, tag_repo, seed_tags):
        victim = seed_tags[0]

        tag_repo.delete(victim, save_immediately=True)

        assert tag_repo.count() == 4
        assert tag_repo.find_by_id(victim.id) is None
        assert tag_repo.find_by_id(victim.id, with_deleted=True) is victim
        assert tag_repo.count(with_deleted=True) == 5
        assert tag_repo.any(Tag.id == victim.id, with_deleted=True)
        assert tag_repo.get_list(with_deleted=True).count == 5

    def test_delete_range_permanent(self, tag_repo, seed_tags):
        tag_repo.delete_range(seed_tags[:3], permanent=True, save_immediately=True)

        assert tag_repo.count(with_deleted=True) == 2

    def test_delete_policy_violation_surfaces(self, uow, db_session):
        post = Post(title="p")
        post.detail = PostDetail(summary="s")
        db_session.add(post)
        uow.save()

        with pytest.raises(IntegrityPolicyViolation):
            Repository(PostDetail, uow).delete(post.detail)


class TestSoftDeleteFilter:
    """The session-wide filter installed on PipelineSession."""

    def test_plain_select_hides_deleted(self, tag_repo, seed_tags, db_session):
        tag_repo.delete(seed_tags[0], save_immediately=True)

        visible = db_session.scalars(select(Tag)).all()
        everything = db_session.scalars(select(Tag).execution_options(**{INCLUDE_DELETED: True})).all()

        assert len(visible) == 4
        assert len(everything) == 5

    def test_session_get_hides_deleted(self, tag_repo, seed_tags, db_session):
        victim_id = seed_tags[0].id
        tag_repo.delete(seed_tags[0], save_immediately=True)
        db_session.expunge_all()

        assert db_session.get(Tag, victim_id) is None


class TestDtos:

    def test_full_audited_dto_reads_orm_attributes(self, tag_repo):
        tag = tag_repo.add(Tag(label="dto"), save_immediately=True)
        tag_repo.delete(tag, save_immediately=True)

        dto = FullAuditedEntityDto.model_validate(tag)

        assert dto.id == tag.id
        assert dto.is_deleted is True
        assert dto.deletion_time == tag.deletion_time
        assert dto.creator_id == tag.creator_id
