"""
Tests for change classification.

Tests verify:
- Partitioning by capability and mutation kind
- classify() is pure and repeatable
- Snapshotting a session's pending state
"""

from persistence_pipeline.services.classifier import (
    ChangeSet,
    Mutation,
    MutationKind,
    classify,
    collect_mutations,
    needs_stamp,
)
from sample_models import Attachment, Blog, BlogAddress, Post, Tag


class TestClassify:
    """Tests for the pure classify() function."""

    def test_partitions_by_kind_and_capability(self):
        post = Post(title="new")
        tag = Tag(label="changed")
        blog = Blog(name="gone")
        address = BlogAddress(city="plain")

        change_set = classify([
            Mutation(post, MutationKind.ADDED),
            Mutation(tag, MutationKind.MODIFIED),
            Mutation(blog, MutationKind.REMOVED),
            Mutation(address, MutationKind.MODIFIED),
        ])

        assert [m.entity for m in change_set.to_stamp] == [post, tag]
        assert [m.entity for m in change_set.to_delete] == [blog]
        # Post and Blog buffer events; Tag and BlogAddress do not
        assert change_set.event_sources == (post, blog)

    def test_entity_without_capabilities_is_excluded(self):
        """BlogAddress is neither audited nor concurrency-tracked."""
        change_set = classify([Mutation(BlogAddress(city="x"), MutationKind.ADDED)])

        assert change_set.is_empty

    def test_event_sources_include_tracked_entities_once(self):
        blog = Blog(name="tracked")

        change_set = classify([Mutation(blog, MutationKind.MODIFIED)], tracked=[blog, Tag(label="t")])

        assert change_set.event_sources == (blog,)

    def test_repeatable_and_side_effect_free(self):
        post = Post(title="same")
        mutations = [Mutation(post, MutationKind.ADDED)]

        first = classify(mutations)
        second = classify(mutations)

        assert first == second
        assert post.creation_time is None

    def test_empty_input(self):
        assert classify([]) == ChangeSet()


class TestNeedsStamp:

    def test_added_needs_creation_or_token(self):
        assert needs_stamp(Mutation(Attachment(file_name="a"), MutationKind.ADDED))
        assert not needs_stamp(Mutation(BlogAddress(city="a"), MutationKind.ADDED))

    def test_modified_needs_modification_or_token(self):
        assert needs_stamp(Mutation(Tag(label="a"), MutationKind.MODIFIED))
        # Creation audit alone is not touched on update
        assert not needs_stamp(Mutation(Attachment(file_name="a"), MutationKind.MODIFIED))

    def test_removed_never_stamped_here(self):
        assert not needs_stamp(Mutation(Tag(label="a"), MutationKind.REMOVED))


class TestCollectMutations:
    """Tests for snapshotting session state."""

    def test_new_dirty_and_deleted(self, uow, db_session):
        kept = Tag(label="kept")
        changed = Tag(label="changed")
        removed = Tag(label="removed")
        db_session.add_all([kept, changed, removed])
        uow.save()

        added = Tag(label="added")
        db_session.add(added)
        changed.label = "changed again"
        db_session.delete(removed)

        mutations = {(m.entity.label, m.kind, m.permanent) for m in collect_mutations(db_session)}

        assert mutations == {
            ("added", MutationKind.ADDED, False),
            ("changed again", MutationKind.MODIFIED, False),
            ("removed", MutationKind.REMOVED, True),
        }

    def test_delete_request_wins(self, uow, db_session):
        tag = Tag(label="both")
        db_session.add(tag)
        uow.save()
        tag.label = "edited then deleted"

        request = Mutation(tag, MutationKind.REMOVED)
        mutations = collect_mutations(db_session, [request])

        assert mutations == [request]
