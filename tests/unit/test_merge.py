"""Unit tests for the merge engine.

Tests snipsync/core/merge.py:
- New items get identities and are inserted
- Last-writer-wins updates
- Updates and deletions of unknown records are no-ops
- Orphaned snippet contents and dangling relationships
- Deletions, cascades and tombstones
- Deleted records stay deleted; unlinked pairs can be linked again
- Batch ordering in apply_push
"""

from __future__ import annotations

import itertools

import pytest

from snipsync.core import merge
from snipsync.core.database import Database
from snipsync.core.delta import get_changes_since
from snipsync.core.identity import IdentityAssigner
from snipsync.core.payloads import (
    ChangeItem,
    DeletionItem,
    FolderData,
    PushRequest,
    SnippetContentData,
    SnippetData,
    SnippetTagItem,
    TagData,
)
from tests.helpers import (
    CONTENT_IDS,
    FOLDER_IDS,
    SNIPPET_IDS,
    T0,
    TAG_IDS,
    deletion,
    link_item,
    new_item,
    push_body,
    update_item,
)

NOW = T0 + 100_000


@pytest.fixture
def assigner() -> IdentityAssigner:
    counter = itertools.count(1)
    return IdentityAssigner(lambda: f"srv-{next(counter)}")


class TestNewItems:
    """Test creation of records made offline."""

    def test_new_folder_inserted(self, empty_db: Database, assigner: IdentityAssigner) -> None:
        item = ChangeItem(
            is_new=True,
            local_id=1,
            data=FolderData(name="Work", created_at=T0, updated_at=T0 + 1),
        )

        outcome = merge.apply_folder_change(empty_db, item, assigner, NOW)

        assert outcome == merge.INSERTED
        folder = empty_db.get_folder("srv-1")
        assert folder.name == "Work"
        assert folder.created_at == T0
        assert folder.updated_at == T0 + 1

    def test_missing_timestamps_use_server_time(
        self, empty_db: Database, assigner: IdentityAssigner
    ) -> None:
        item = ChangeItem(is_new=True, local_id="a", data=TagData(name="bash"))

        merge.apply_tag_change(empty_db, item, assigner, NOW)

        tag = empty_db.get_tag("srv-1")
        assert tag.created_at == NOW
        assert tag.updated_at == NOW

    def test_new_snippet_content(self, populated_db: Database, assigner: IdentityAssigner) -> None:
        item = ChangeItem(
            is_new=True,
            local_id=7,
            data=SnippetContentData(
                snippet_id=SNIPPET_IDS["Backup"], label="restore", value="rsync back",
                updated_at=T0 + 5000,
            ),
        )

        outcome = merge.apply_snippet_content_change(populated_db, item, assigner, NOW)

        assert outcome == merge.INSERTED
        assert populated_db.get_snippet_content("srv-1").label == "restore"
        assert assigner.mappings[0].table_name == "snippet_contents"


class TestUpdates:
    """Test last-writer-wins resolution."""

    def _folder_update(self, name: str, updated_at: int) -> ChangeItem:
        return ChangeItem(
            is_new=False,
            server_id=FOLDER_IDS["Work"],
            data=FolderData(name=name, updated_at=updated_at),
        )

    def test_newer_update_wins(self, populated_db: Database, assigner: IdentityAssigner) -> None:
        outcome = merge.apply_folder_change(
            populated_db, self._folder_update("Job", T0 + 1001), assigner, NOW
        )

        assert outcome == merge.UPDATED
        folder = populated_db.get_folder(FOLDER_IDS["Work"])
        assert folder.name == "Job"
        assert folder.updated_at == T0 + 1001
        assert folder.created_at == T0

    def test_update_overwrites_all_mutable_fields(
        self, populated_db: Database, assigner: IdentityAssigner
    ) -> None:
        """Fields missing from the update take their defaults, not stored values."""
        merge.apply_folder_change(
            populated_db, self._folder_update("Job", T0 + 5000), assigner, NOW
        )

        folder = populated_db.get_folder(FOLDER_IDS["Work"])
        assert folder.default_language == ""
        assert folder.is_open == 0

    def test_equal_timestamp_is_stale(
        self, populated_db: Database, assigner: IdentityAssigner
    ) -> None:
        outcome = merge.apply_folder_change(
            populated_db, self._folder_update("Job", T0 + 1000), assigner, NOW
        )

        assert outcome == merge.STALE
        assert populated_db.get_folder(FOLDER_IDS["Work"]).name == "Work"

    def test_older_timestamp_is_stale(
        self, populated_db: Database, assigner: IdentityAssigner
    ) -> None:
        outcome = merge.apply_folder_change(
            populated_db, self._folder_update("Job", T0), assigner, NOW
        )

        assert outcome == merge.STALE
        assert populated_db.get_folder(FOLDER_IDS["Work"]).name == "Work"
    @pytest.mark.parametrize("first,second", [
        (("A", T0 + 2000), ("B", T0 + 3000)),
        (("B", T0 + 3000), ("A", T0 + 2000)),
    ])
    def test_order_of_updates_does_not_matter(
        self, populated_db: Database, assigner: IdentityAssigner, first, second
    ) -> None:
        for name, updated_at in (first, second):
            merge.apply_folder_change(
                populated_db, self._folder_update(name, updated_at), assigner, NOW
            )

        folder = populated_db.get_folder(FOLDER_IDS["Work"])
        assert (folder.name, folder.updated_at) == ("B", T0 + 3000)

    @pytest.mark.parametrize("names", [("A", "B"), ("B", "A")])
    def test_tied_updates_after_stored_row_apply_first_only(
        self, populated_db: Database, assigner: IdentityAssigner, names
    ) -> None:
        """Of two updates with the same timestamp, whichever lands first stays."""
        outcomes = [
            merge.apply_folder_change(
                populated_db, self._folder_update(name, T0 + 2000), assigner, NOW
            )
            for name in names
        ]

        assert outcomes == [merge.UPDATED, merge.STALE]
        assert populated_db.get_folder(FOLDER_IDS["Work"]).name == names[0]

    @pytest.mark.parametrize("names", [("A", "B"), ("B", "A")])
    def test_tie_with_stored_row_keeps_stored_value(
        self, populated_db: Database, assigner: IdentityAssigner, names
    ) -> None:
        for name in names:
            outcome = merge.apply_folder_change(
                populated_db, self._folder_update(name, T0 + 1000), assigner, NOW
            )
            assert outcome == merge.STALE

        folder = populated_db.get_folder(FOLDER_IDS["Work"])
        assert (folder.name, folder.updated_at) == ("Work", T0 + 1000)


    def test_update_of_unknown_record_is_not_resurrected(
        self, empty_db: Database, assigner: IdentityAssigner
    ) -> None:
        item = ChangeItem(
            is_new=False, server_id="gone", data=SnippetData(name="x", updated_at=NOW)
        )

        assert merge.apply_snippet_change(empty_db, item, assigner, NOW) == merge.MISSING
        assert empty_db.get_snippet("gone") is None
        assert assigner.mappings == []


class TestOrphanedContents:
    """Test contents whose snippet does not exist."""

    def test_new_orphan_not_inserted_but_mapped(
        self, empty_db: Database, assigner: IdentityAssigner
    ) -> None:
        item = ChangeItem(
            is_new=True, local_id=3,
            data=SnippetContentData(snippet_id="deleted-snippet", value="x"),
        )

        outcome = merge.apply_snippet_content_change(empty_db, item, assigner, NOW)

        assert outcome == merge.ORPHANED
        assert empty_db.get_snippet_contents() == []
        assert [m.local_id for m in assigner.mappings] == [3]

    def test_update_moving_content_to_missing_snippet(
        self, populated_db: Database, assigner: IdentityAssigner
    ) -> None:
        item = ChangeItem(
            is_new=False, server_id=CONTENT_IDS["Deploy/main"],
            data=SnippetContentData(snippet_id="deleted-snippet", updated_at=NOW),
        )

        outcome = merge.apply_snippet_content_change(populated_db, item, assigner, NOW)

        assert outcome == merge.ORPHANED
        content = populated_db.get_snippet_content(CONTENT_IDS["Deploy/main"])
        assert content.snippet_id == SNIPPET_IDS["Deploy"]


class TestSnippetTags:
    """Test relationship items."""

    def test_link(self, populated_db: Database) -> None:
        item = SnippetTagItem(SNIPPET_IDS["Backup"], TAG_IDS["ops"], created_at=T0 + 7000)

        assert merge.apply_snippet_tag(populated_db, item, NOW) == merge.LINKED
        link = populated_db.get_snippet_tag(SNIPPET_IDS["Backup"], TAG_IDS["ops"])
        assert link.created_at == T0 + 7000

    def test_link_without_created_at_uses_server_time(self, populated_db: Database) -> None:
        item = SnippetTagItem(SNIPPET_IDS["Backup"], TAG_IDS["ops"])

        merge.apply_snippet_tag(populated_db, item, NOW)

        assert populated_db.get_snippet_tag(SNIPPET_IDS["Backup"], TAG_IDS["ops"]).created_at == NOW

    def test_existing_link_unchanged(self, populated_db: Database) -> None:
        item = SnippetTagItem(SNIPPET_IDS["Deploy"], TAG_IDS["bash"], created_at=NOW)

        assert merge.apply_snippet_tag(populated_db, item, NOW) == merge.UNCHANGED
        link = populated_db.get_snippet_tag(SNIPPET_IDS["Deploy"], TAG_IDS["bash"])
        assert link.created_at == T0 + 3000

    def test_dangling_tag(self, populated_db: Database) -> None:
        item = SnippetTagItem(SNIPPET_IDS["Deploy"], "no-such-tag")

        assert merge.apply_snippet_tag(populated_db, item, NOW) == merge.MISSING
        assert populated_db.get_snippet_tag(SNIPPET_IDS["Deploy"], "no-such-tag") is None

    def test_not_new_is_noop(self, populated_db: Database) -> None:
        item = SnippetTagItem(SNIPPET_IDS["Backup"], TAG_IDS["ops"], is_new=False)

        assert merge.apply_snippet_tag(populated_db, item, NOW) == merge.UNCHANGED
        assert populated_db.get_snippet_tag(SNIPPET_IDS["Backup"], TAG_IDS["ops"]) is None


class TestDeletions:
    """Test hard deletions and tombstones."""

    def test_delete_snippet_cascades_with_one_tombstone(self, populated_db: Database) -> None:
        item = DeletionItem("snippets", SNIPPET_IDS["Deploy"], NOW)

        assert merge.apply_deletion(populated_db, item) == merge.DELETED

        assert populated_db.get_snippet(SNIPPET_IDS["Deploy"]) is None
        assert populated_db.get_snippet_content(CONTENT_IDS["Deploy/main"]) is None
        assert populated_db.get_snippet_tag(SNIPPET_IDS["Deploy"], TAG_IDS["ops"]) is None
        tombstones = populated_db.get_tombstones()
        assert [(t.table_name, t.record_id, t.deleted_at) for t in tombstones] == [
            ("snippets", SNIPPET_IDS["Deploy"], NOW)
        ]

    def test_delete_tag_keeps_snippets(self, populated_db: Database) -> None:
        merge.apply_deletion(populated_db, DeletionItem("tags", TAG_IDS["bash"], NOW))

        assert populated_db.get_snippet_tag(SNIPPET_IDS["Backup"], TAG_IDS["bash"]) is None
        assert populated_db.get_snippet(SNIPPET_IDS["Backup"]) is not None

    def test_delete_snippet_tag_by_composite_id(self, populated_db: Database) -> None:
        record_id = f"{SNIPPET_IDS['Deploy']}:{TAG_IDS['ops']}"

        outcome = merge.apply_deletion(populated_db, DeletionItem("snippet_tags", record_id, NOW))

        assert outcome == merge.DELETED
        assert populated_db.get_snippet_tag(SNIPPET_IDS["Deploy"], TAG_IDS["ops"]) is None
        assert populated_db.get_tombstone("snippet_tags", record_id) is not None

    def test_repeated_deletion_unchanged(self, populated_db: Database) -> None:
        item = DeletionItem("folders", FOLDER_IDS["Work"], NOW)
        merge.apply_deletion(populated_db, item)

        later = DeletionItem("folders", FOLDER_IDS["Work"], NOW + 1)
        assert merge.apply_deletion(populated_db, later) == merge.UNCHANGED

        tombstones = populated_db.get_tombstones()
        assert len(tombstones) == 1
        assert tombstones[0].deleted_at == NOW

    def test_delete_unknown_record_leaves_no_tombstone(self, empty_db: Database) -> None:
        outcome = merge.apply_deletion(empty_db, DeletionItem("tags", "never-existed", NOW))

        assert outcome == merge.MISSING
        assert empty_db.get_tombstones() == []

    def test_malformed_snippet_tag_id(self, populated_db: Database) -> None:
        outcome = merge.apply_deletion(populated_db, DeletionItem("snippet_tags", "no-colon", NOW))
        assert outcome == merge.MISSING


class TestApplyPush:
    """Test a whole push batch."""

    def test_stats(self, populated_db: Database, assigner: IdentityAssigner) -> None:
        request = PushRequest.from_dict(push_body(
            folders=[
                new_item(1, name="Personal"),
                update_item(FOLDER_IDS["Work"], name="Old", updatedAt=T0),
            ],
            tags=[update_item(TAG_IDS["ops"], name="devops", updatedAt=T0 + 600)],
            snippet_tags=[link_item(SNIPPET_IDS["Backup"], TAG_IDS["ops"])],
            deletions=[deletion("snippetContents", CONTENT_IDS["Backup/main"], NOW)],
        ))

        stats = merge.apply_push(populated_db, request, assigner, NOW)

        assert stats.get("folders", merge.INSERTED) == 1
        assert stats.get("folders", merge.STALE) == 1
        assert stats.get("tags", merge.UPDATED) == 1
        assert stats.get("snippet_tags", merge.LINKED) == 1
        assert stats.get("snippet_contents", merge.DELETED) == 1
        assert stats.total(merge.INSERTED) == 1
        assert "folders: 1 inserted, 1 stale" in stats.summary()

    def test_deletions_run_after_changes(
        self, populated_db: Database, assigner: IdentityAssigner
    ) -> None:
        """An update and a deletion of the same record in one batch ends deleted."""
        request = PushRequest.from_dict(push_body(
            snippets=[update_item(SNIPPET_IDS["Backup"], name="B2", updatedAt=NOW)],
            deletions=[deletion("snippets", SNIPPET_IDS["Backup"], NOW)],
        ))

        merge.apply_push(populated_db, request, assigner, NOW)

        assert populated_db.get_snippet(SNIPPET_IDS["Backup"]) is None
        assert populated_db.get_tombstone("snippets", SNIPPET_IDS["Backup"]) is not None

    def test_tags_before_links(self, populated_db: Database, assigner: IdentityAssigner) -> None:
        """Links to a tag updated in the same batch see the tag."""
        request = PushRequest.from_dict(push_body(
            snippet_tags=[link_item(SNIPPET_IDS["Backup"], TAG_IDS["ops"])],
            tags=[update_item(TAG_IDS["ops"], name="devops", updatedAt=NOW)],
        ))

        stats = merge.apply_push(populated_db, request, assigner, NOW)

        assert stats.get("snippet_tags", merge.LINKED) == 1

    def test_empty_push(self, empty_db: Database, assigner: IdentityAssigner) -> None:
        stats = merge.apply_push(empty_db, PushRequest(), assigner, NOW)
        assert stats.summary() == "no changes"


class TestNoResurrection:
    """A deleted record stays deleted whatever arrives later."""

    @pytest.mark.parametrize("table,record_id,apply,data", [
        ("snippets", SNIPPET_IDS["Backup"], merge.apply_snippet_change,
         SnippetData(name="Backup 2", updated_at=NOW + 5000)),
        ("tags", TAG_IDS["ops"], merge.apply_tag_change,
         TagData(name="devops", updated_at=NOW + 5000)),
    ])
    def test_newer_update_after_deletion_is_dropped(
        self, populated_db: Database, assigner: IdentityAssigner,
        table, record_id, apply, data,
    ) -> None:
        merge.apply_deletion(populated_db, DeletionItem(table, record_id, NOW))

        item = ChangeItem(is_new=False, server_id=record_id, data=data)
        outcome = apply(populated_db, item, assigner, NOW + 5000)

        assert outcome == merge.MISSING
        getter = populated_db.get_snippet if table == "snippets" else populated_db.get_tag
        assert getter(record_id) is None
        tombstone = populated_db.get_tombstone(table, record_id)
        assert tombstone.deleted_at == NOW
        assert len(populated_db.get_tombstones()) == 1
        assert assigner.mappings == []

    def test_update_and_deletion_in_later_pushes(
        self, populated_db: Database, assigner: IdentityAssigner
    ) -> None:
        merge.apply_push(populated_db, PushRequest.from_dict(push_body(
            deletions=[deletion("snippets", SNIPPET_IDS["Deploy"], NOW)],
        )), assigner, NOW)

        stats = merge.apply_push(populated_db, PushRequest.from_dict(push_body(
            snippets=[update_item(SNIPPET_IDS["Deploy"], name="Back", updatedAt=NOW + 1)],
            snippet_contents=[
                update_item(CONTENT_IDS["Deploy/main"], snippetId=SNIPPET_IDS["Deploy"],
                            updatedAt=NOW + 1),
            ],
        )), assigner, NOW + 1)

        assert stats.get("snippets", merge.MISSING) == 1
        assert populated_db.get_snippet(SNIPPET_IDS["Deploy"]) is None
        assert populated_db.get_snippet_content(CONTENT_IDS["Deploy/main"]) is None


class TestRelink:
    """A snippet-tag pair can be unlinked, linked again and unlinked again."""

    RECORD_ID = f"{SNIPPET_IDS['Deploy']}:{TAG_IDS['ops']}"

    def _unlink(self, db: Database, deleted_at: int) -> str:
        return merge.apply_deletion(db, DeletionItem("snippet_tags", self.RECORD_ID, deleted_at))

    def _link(self, db: Database, created_at: int) -> str:
        item = SnippetTagItem(SNIPPET_IDS["Deploy"], TAG_IDS["ops"], created_at=created_at)
        return merge.apply_snippet_tag(db, item, created_at)

    def test_relink_clears_tombstone(self, populated_db: Database) -> None:
        assert self._unlink(populated_db, T0 + 11_000) == merge.DELETED

        assert self._link(populated_db, T0 + 12_000) == merge.LINKED

        assert populated_db.get_snippet_tag(SNIPPET_IDS["Deploy"], TAG_IDS["ops"]) is not None
        assert populated_db.get_tombstone("snippet_tags", self.RECORD_ID) is None

    def test_unlink_after_relink(self, populated_db: Database) -> None:
        self._unlink(populated_db, T0 + 11_000)
        self._link(populated_db, T0 + 12_000)

        assert self._unlink(populated_db, T0 + 13_000) == merge.DELETED

        assert populated_db.get_snippet_tag(SNIPPET_IDS["Deploy"], TAG_IDS["ops"]) is None
        tombstones = populated_db.get_tombstones()
        assert [(t.record_id, t.deleted_at) for t in tombstones] == [
            (self.RECORD_ID, T0 + 13_000)
        ]

    def test_pull_after_relink_is_consistent(self, populated_db: Database) -> None:
        """A pull never carries both a live pair and a tombstone for it."""
        self._unlink(populated_db, T0 + 11_000)
        self._link(populated_db, T0 + 12_000)
        relinked = get_changes_since(populated_db, T0 + 10_500)
        self._unlink(populated_db, T0 + 13_000)
        unlinked = get_changes_since(populated_db, T0 + 10_500)

        assert [link.tag_id for link in relinked.snippet_tags] == [TAG_IDS["ops"]]
        assert relinked.deletions == []
        assert unlinked.snippet_tags == []
        assert [t.deleted_at for t in unlinked.deletions] == [T0 + 13_000]
