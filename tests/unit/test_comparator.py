"""
Unit tests for the diff engine.

Tests cover:
- Identity and simple additions/removals
- Rename detection from rename history
- Property-level modifications
- Canonical ordering and determinism
"""

import pytest

from schemasync.diff.changes import ChangeKind, EntityKind
from schemasync.diff.comparator import Comparator, diff, entity_path
from schemasync.errors import DiffAmbiguityError
from schemasync.schema.document import SchemaDocument
from schemasync.schema.types import (
    FunctionDefinition,
    ParamDefinition,
    RelationDefinition,
    TableDefinition,
    UserDefinition,
    UserLevel,
    field,
)


def _doc(*tables, **kwargs):
    return SchemaDocument(tables=tables, **kwargs)


def _user(*fields, **kwargs):
    return TableDefinition(name="user", fields=fields, **kwargs)


class TestBasicDiff:
    """Tests for additions, removals and identity."""

    def test_identical_documents(self):
        """diff(X, X) is empty."""
        doc = _doc(
            _user(field("email", "string"), field("name", "string")),
            relations=(RelationDefinition(name="follows", from_table="user", to_table="user"),),
            functions=(FunctionDefinition(name="one", body="RETURN 1"),),
        )
        changes = diff(doc, doc)
        assert changes.is_empty
        assert len(changes) == 0

    def test_add_field(self):
        """A field present only in desired is one ADD."""
        desired = _doc(_user(field("email", "string"), field("name", "string")))
        live = _doc(_user(field("email", "string")))

        changes = diff(desired, live)

        assert len(changes) == 1
        change = changes.changes[0]
        assert change.change_kind == ChangeKind.ADD
        assert change.entity_kind == EntityKind.FIELD
        assert change.entity_path == "table:user.field:name"
        assert change.container == "user"
        assert change.before is None
        assert change.after.type_signature == "string"

    def test_remove_field_is_destructive(self):
        """A field present only in live is a destructive REMOVE."""
        changes = diff(_doc(_user()), _doc(_user(field("legacy", "string"))))

        assert [c.change_kind for c in changes] == [ChangeKind.REMOVE]
        assert changes.changes[0].change_kind.is_destructive
        assert changes.summary() == {"add": 0, "remove": 1, "modify": 0, "rename": 0}

    def test_added_table_carries_children(self):
        """Children of an added table are not separate changes."""
        changes = diff(_doc(_user(field("email", "string"))), _doc())

        assert len(changes) == 1
        assert changes.changes[0].entity_path == "table:user"
        assert changes.changes[0].after.get_field("email") is not None

    def test_relation_child_paths(self):
        """Children of relations are addressed through the relation."""
        desired = SchemaDocument(
            relations=(
                RelationDefinition(
                    name="follows", from_table="user", to_table="user", fields=(field("since", "datetime"),)
                ),
            )
        )
        live = SchemaDocument(relations=(RelationDefinition(name="follows", from_table="user", to_table="user"),))

        changes = diff(desired, live)

        assert [c.entity_path for c in changes] == ["relation:follows.field:since"]
        assert changes.changes[0].container_kind == EntityKind.RELATION


class TestRenameDetection:
    """Tests for rename_history handling."""

    def test_rename_collapses_add_remove(self):
        """A matching history entry turns REMOVE+ADD into one RENAME."""
        desired = _doc(_user(field("age", "int", rename_history=("yearsOld",))))
        live = _doc(_user(field("yearsOld", "int")))

        changes = diff(desired, live)

        assert len(changes) == 1
        change = changes.changes[0]
        assert change.change_kind == ChangeKind.RENAME
        assert change.old_name == "yearsOld"
        assert change.name == "age"
        assert change.field_diffs == ()
        assert str(change) == "RENAME table:user.field:age (was yearsOld)"

    def test_rename_with_modification(self):
        """Property changes travel with the rename."""
        desired = _doc(_user(field("age", "int", rename_history=("yearsOld",))))
        live = _doc(_user(field("yearsOld", "string")))

        change = diff(desired, live).changes[0]

        assert change.change_kind == ChangeKind.RENAME
        assert change.changed_properties == ("type",)

    def test_earliest_history_entry_wins(self):
        """History is scanned oldest first."""
        desired = _doc(_user(field("c", "int", rename_history=("a", "b"))))
        live = _doc(_user(field("a", "int"), field("b", "int")))

        changes = diff(desired, live)

        kinds = {(c.change_kind, c.name) for c in changes}
        assert kinds == {(ChangeKind.RENAME, "c"), (ChangeKind.REMOVE, "b")}
        rename = next(c for c in changes if c.change_kind == ChangeKind.RENAME)
        assert rename.old_name == "a"

    def test_history_of_surviving_entity_ignored(self):
        """An old name still present in desired is not a rename source."""
        desired = _doc(_user(field("a", "int"), field("b", "int", rename_history=("a",))))
        live = _doc(_user(field("a", "int")))

        changes = diff(desired, live)

        assert [(c.change_kind, c.name) for c in changes] == [(ChangeKind.ADD, "b")]

    def test_ambiguous_claim_rejected(self):
        """Two entities claiming one removed name is an error."""
        desired = _doc(
            _user(
                field("x", "int", rename_history=("old",)),
                field("y", "int", rename_history=("old",)),
            )
        )
        live = _doc(_user(field("old", "int")))

        with pytest.raises(DiffAmbiguityError) as exc_info:
            diff(desired, live)
        assert exc_info.value.removed_name == "old"
        assert exc_info.value.claimants == ["x", "y"]

    def test_table_rename_compares_children(self):
        """Children of a renamed table are diffed against the old table."""
        desired = _doc(
            TableDefinition(
                name="user",
                rename_history=("person",),
                fields=(field("email", "string"), field("name", "string")),
            )
        )
        live = _doc(TableDefinition(name="person", fields=(field("email", "string"),)))

        changes = diff(desired, live)

        assert [(c.change_kind, c.entity_path) for c in changes] == [
            (ChangeKind.RENAME, "table:user"),
            (ChangeKind.ADD, "table:user.field:name"),
        ]

    def test_no_similarity_inference(self):
        """Without history a name change is REMOVE plus ADD."""
        desired = _doc(_user(field("age", "int")))
        live = _doc(_user(field("yearsOld", "int")))

        assert sorted(c.change_kind.name for c in diff(desired, live)) == ["ADD", "REMOVE"]


class TestModify:
    """Tests for property-level differences."""

    def test_field_properties(self):
        """Each differing property is itemized in declaration order."""
        desired = _doc(_user(field("email", "string", assertions=("string::is::email($value)",), comment="login")))
        live = _doc(_user(field("email", "option<string>")))

        change = diff(desired, live).changes[0]

        assert change.change_kind == ChangeKind.MODIFY
        assert change.changed_properties == ("type", "assertions", "comment")
        type_diff = change.field_diffs[0]
        assert type_diff.before == "option<string>"
        assert type_diff.after == "string"

    def test_optional_flag_counts_as_type(self):
        """optional=True and option<T> compare equal."""
        desired = _doc(_user(field("age", "int", optional=True)))
        live = _doc(_user(field("age", "option<int>")))

        assert diff(desired, live).is_empty

    def test_assertion_order_matters(self):
        """Assertion lists are ordered."""
        desired = _doc(_user(field("n", "int", assertions=("$value > 0", "$value < 10"))))
        live = _doc(_user(field("n", "int", assertions=("$value < 10", "$value > 0"))))

        assert diff(desired, live).changes[0].changed_properties == ("assertions",)

    def test_param_value(self):
        """Database-level entities are compared too."""
        desired = SchemaDocument(params=(ParamDefinition(name="region", value="'eu'"),))
        live = SchemaDocument(params=(ParamDefinition(name="region", value="'us'"),))

        change = diff(desired, live).changes[0]
        assert change.entity_path == "param:region"
        assert change.field_diffs[0].to_dict() == {"property": "value", "before": "'us'", "after": "'eu'"}

    def test_user_roles_and_level(self):
        """Users compare roles and level like any other property."""
        desired = SchemaDocument(
            users=(UserDefinition(name="admin", level=UserLevel.NAMESPACE, roles=("EDITOR", "OWNER")),)
        )
        live = SchemaDocument(users=(UserDefinition(name="admin", roles=("OWNER",)),))

        change = diff(desired, live).changes[0]
        assert change.entity_kind == EntityKind.USER
        assert change.change_kind == ChangeKind.MODIFY
        assert change.entity_path == "user:admin"
        assert change.changed_properties == ("level", "roles")


class TestOrdering:
    """Tests for canonical order and determinism."""

    def test_kind_order(self):
        """Changes are grouped by entity kind in canonical order."""
        desired = SchemaDocument(
            tables=(TableDefinition(name="post"), _user(field("email", "string"))),
            functions=(FunctionDefinition(name="one", body="RETURN 1"),),
        )
        live = _doc(_user())

        changes = diff(desired, live)

        assert [c.entity_path for c in changes] == ["table:post", "table:user.field:email", "function:one"]

    def test_deterministic(self):
        """Equal inputs give identical serialized output."""
        desired = _doc(
            _user(field("a", "int"), field("b", "string", rename_history=("bee",)), field("c", "bool")),
            functions=(FunctionDefinition(name="one", body="RETURN 1"),),
        )
        live = _doc(_user(field("bee", "string"), field("z", "int")))

        first = Comparator().diff(desired, live).to_dict()
        second = Comparator().diff(desired, live).to_dict()
        assert first == second

    def test_entity_path(self):
        """Paths are kind:name, prefixed by the container when present."""
        assert entity_path(EntityKind.TABLE, "user") == "table:user"
        assert entity_path(EntityKind.INDEX, "by_email", "user") == "table:user.index:by_email"
        assert (
            entity_path(EntityKind.FIELD, "since", "follows", EntityKind.RELATION)
            == "relation:follows.field:since"
        )
