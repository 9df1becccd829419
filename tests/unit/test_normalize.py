"""
Unit tests for schema normalization.

Tests cover:
- Type signature canonicalization
- Field, trigger and container rules
- Database-level entities
- Idempotence
- Error reporting with entity paths
"""

import pytest

from schemasync.errors import NormalizationError
from schemasync.schema.document import SchemaDocument
from schemasync.schema.normalize import is_synthetic_field, normalize, normalize_type
from schemasync.schema.types import (
    AccessDefinition,
    FunctionDefinition,
    FunctionParam,
    IndexAnalyzerDefinition,
    ParamDefinition,
    RelationDefinition,
    TableDefinition,
    TriggerDefinition,
    UserDefinition,
    field,
)


class TestNormalizeType:
    """Tests for normalize_type."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("string", ("string", False)),
            ("String", ("string", False)),
            ("option<int>", ("int", True)),
            ("int?", ("int", True)),
            ("none | String", ("string", True)),
            ("string | none", ("string", True)),
            ("array< boolean >", ("array<bool>", False)),
            ("integer", ("int", False)),
            ("option<array<record<user>>>", ("array<record<user>>", True)),
            ("", ("any", False)),
            (None, ("any", False)),
        ],
    )
    def test_canonical_types(self, raw, expected):
        """Aliases collapse and nullable spellings become optional."""
        assert normalize_type(raw) == expected

    def test_union_without_none_is_kept(self):
        """A union of concrete types is not optional."""
        assert normalize_type("int | string") == ("int|string", False)


class TestFieldRules:
    """Tests for field normalization."""

    def _normalize_fields(self, *fields):
        doc = SchemaDocument(tables=(TableDefinition(name="user", fields=fields),))
        return normalize(doc).get_table("user").fields

    def test_optional_type_lifted(self):
        """option<T> becomes optional=True with the inner type."""
        (age,) = self._normalize_fields(field("age", "option<int>"))
        assert age.type_signature == "int"
        assert age.optional is True
        assert age.effective_type == "option<int>"

    def test_assertions_split_into_conjuncts(self):
        """A single AND-combined assertion becomes an ordered list."""
        (email,) = self._normalize_fields(
            field("email", "string", assertions=("$value != NONE AND string::len($value) > 3",))
        )
        assert email.assertions == ("$value != NONE", "string::len($value) > 3")

    def test_blank_assertions_dropped(self):
        """Empty assertion strings disappear."""
        (name,) = self._normalize_fields(field("name", "string", assertions=("", "  ")))
        assert name.assertions == ()

    def test_default_quoting(self):
        """Double-quoted literals are rewritten with single quotes."""
        (role,) = self._normalize_fields(field("role", "string", default='"member"'))
        assert role.default_expr == "'member'"

    def test_permissions_full_collapses(self):
        """FULL permissions are the same as no permissions."""
        (name,) = self._normalize_fields(field("name", "string", permissions="FULL"))
        assert name.permissions is None

    def test_empty_comment_dropped(self):
        """Empty and null-like comments normalize to None."""
        fields = self._normalize_fields(
            field("a", "string", comment=""),
            field("b", "string", comment="null"),
            field("c", "string", comment="kept"),
        )
        assert [f.comment for f in fields] == [None, None, "kept"]

    def test_array_placeholders_dropped(self):
        """Element placeholder fields are not compared."""
        fields = self._normalize_fields(
            field("tags", "array<string>"),
            field("tags.*", "string"),
            field("scores[*]", "int"),
        )
        assert [f.name for f in fields] == ["tags"]

    def test_nested_fields_kept(self):
        """Dot-path fields are real fields."""
        fields = self._normalize_fields(field("address", "object"), field("address.city", "string"))
        assert [f.name for f in fields] == ["address", "address.city"]


class TestContainerRules:
    """Tests for tables, relations and triggers."""

    def test_relation_implicit_fields_dropped(self):
        """in/out on relations are generated by the database."""
        doc = SchemaDocument(
            relations=(
                RelationDefinition(
                    name="follows",
                    from_table="user",
                    to_table="user",
                    fields=(field("in", "record<user>"), field("out", "record<user>"), field("since", "datetime")),
                ),
            )
        )
        relation = normalize(doc).get_relation("follows")
        assert [f.name for f in relation.fields] == ["since"]

    def test_in_field_kept_on_normal_table(self):
        """Only relations have implicit in/out."""
        assert not is_synthetic_field("in", relation=False)
        assert is_synthetic_field("in", relation=True)

    def test_changefeed_duration(self):
        """Retention policies use the canonical duration unit."""
        doc = SchemaDocument(tables=(TableDefinition(name="audit", retention_policy="1w"),))
        assert normalize(doc).get_table("audit").retention_policy == "7d"

    def test_trigger_true_condition_dropped(self):
        """A WHEN true condition is the same as no condition."""
        trigger = TriggerDefinition(name="log", then_statements=("CREATE log SET at = time::now()",), when_expr="true")
        doc = SchemaDocument(tables=(TableDefinition(name="user", triggers=(trigger,)),))
        assert normalize(doc).get_table("user").get_trigger("log").when_expr is None

    def test_trigger_statements_split(self):
        """A multi-statement block is split into separate statements."""
        trigger = TriggerDefinition(name="log", then_statements=("CREATE a SET x = 1;  CREATE b SET y = 2;",))
        doc = SchemaDocument(tables=(TableDefinition(name="user", triggers=(trigger,)),))
        normalized = normalize(doc).get_table("user").get_trigger("log")
        assert normalized.then_statements == ("CREATE a SET x = 1", "CREATE b SET y = 2")


class TestDatabaseEntities:
    """Tests for functions, analyzers, accesses, params and users."""

    def test_function(self):
        """Bodies are canonical text, parameter types are canonical."""
        fn = FunctionDefinition(
            name="greet",
            body="RETURN   'Hello ' + $who;",
            params=(FunctionParam("who", "String"),),
            return_type="none | string",
        )
        normalized = normalize(SchemaDocument(functions=(fn,))).get_function("greet")
        assert normalized.body == "RETURN 'Hello ' + $who"
        assert normalized.params == (FunctionParam("who", "string"),)
        assert normalized.return_type == "option<string>"

    def test_analyzer(self):
        """Analyzer function loses its fn:: prefix, tokenizers are lower-case."""
        analyzer = IndexAnalyzerDefinition(
            name="ascii", tokenizers=(" Blank ", "CLASS"), filters=("ascii", "EDGENGRAM(2, 10)"), function="fn::prep"
        )
        normalized = normalize(SchemaDocument(analyzers=(analyzer,))).get_analyzer("ascii")
        assert normalized.tokenizers == ("blank", "class")
        assert normalized.filters == ("ascii", "edgengram(2,10)")
        assert normalized.function == "prep"

    def test_access_durations(self):
        """Access durations are canonical."""
        access = AccessDefinition(name="account", session_duration="24h", token_duration="60m")
        normalized = normalize(SchemaDocument(accesses=(access,))).accesses[0]
        assert normalized.session_duration == "1d"
        assert normalized.token_duration == "1h"

    def test_param_value(self):
        """Param values use canonical quoting."""
        param = ParamDefinition(name="region", value='"eu-west"')
        assert normalize(SchemaDocument(params=(param,))).params[0].value == "'eu-west'"

    def test_user_roles_and_durations(self):
        """User roles are an upper-case sorted set, durations are canonical."""
        user = UserDefinition(name="reporter", roles=("viewer", "EDITOR", "Viewer"), session_duration="24h")
        normalized = normalize(SchemaDocument(users=(user,))).users[0]
        assert normalized.roles == ("EDITOR", "VIEWER")
        assert normalized.session_duration == "1d"
        assert normalized.token_duration is None


class TestIdempotence:
    """normalize(normalize(x)) == normalize(x)."""

    def test_idempotent(self):
        """Normalizing twice changes nothing."""
        doc = SchemaDocument(
            tables=(
                TableDefinition(
                    name="user",
                    permissions="FOR select WHERE id = $auth.id",
                    retention_policy="48h",
                    fields=(
                        field("email", "String", assertions=("$value != NONE && string::is::email($value)",)),
                        field("age", "int?", default="0"),
                        field("tags.*", "string"),
                    ),
                ),
            ),
            functions=(FunctionDefinition(name="one", body="RETURN 1;"),),
        )
        once = normalize(doc)
        assert normalize(once) == once

    def test_spelling_variants_converge(self):
        """Two spellings of the same schema normalize to equal documents."""
        a = SchemaDocument(tables=(TableDefinition(name="t", fields=(field("n", "option<integer>", default='"x"'),)),))
        b = SchemaDocument(tables=(TableDefinition(name="t", fields=(field("n", "none|int", default="'x'"),)),))
        assert normalize(a) == normalize(b)


class TestNormalizationErrors:
    """Tests for error reporting."""

    def test_error_names_entity_path(self):
        """A malformed assertion reports where it was found."""
        doc = SchemaDocument(
            tables=(TableDefinition(name="user", fields=(field("age", "int", assertions=("($value > 0",)),)),)
        )
        with pytest.raises(NormalizationError) as exc_info:
            normalize(doc)
        assert exc_info.value.entity_path == "table:user.field:age"
        assert exc_info.value.code == "NORMALIZATION_ERROR"

    def test_function_body_error(self):
        """Unterminated literals in function bodies are reported."""
        doc = SchemaDocument(functions=(FunctionDefinition(name="bad", body="RETURN 'oops"),))
        with pytest.raises(NormalizationError) as exc_info:
            normalize(doc)
        assert exc_info.value.entity_path == "function:bad"
