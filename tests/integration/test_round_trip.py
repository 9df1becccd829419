"""
Integration tests for plan reversibility.

Each scenario plans live -> desired, applies the up statements to an
InMemoryDatabase holding the live schema and checks it now matches the
desired schema. Applying the down statements afterwards must bring the
database back to the live schema.
"""

import pytest

from schemasync.diff.comparator import diff
from schemasync.plan.planner import Planner
from schemasync.runtime.memory import InMemoryDatabase
from schemasync.schema.loader import parse_yaml
from schemasync.schema.normalize import normalize

PERSON_POST_WROTE = """
tables:
  - name: person
    fields:
      - name: yearsOld
        type: int
  - name: post
    fields:
      - name: title
        type: string
relations:
  - name: wrote
    from: person
    to: post
"""

USER_ONLY = """
tables:
  - name: user
    was: person
    fields:
      - name: yearsOld
        type: int
"""

SCENARIOS = [
    pytest.param(
        PERSON_POST_WROTE,
        USER_ONLY,
        id="endpoint-renamed-relation-dropped",
    ),
    pytest.param(
        PERSON_POST_WROTE,
        """
tables:
  - name: user
    was: person
    fields:
      - name: age
        was: yearsOld
        type: int
      - name: email
        type: string
  - name: post
    fields:
      - name: title
        type: string
relations:
  - name: wrote
    from: user
    to: post
""",
        id="endpoint-renamed-relation-kept",
    ),
    pytest.param(
        """
tables:
  - name: post
    fields:
      - name: title
        type: string
      - name: published
        type: bool
        default: false
""",
        """
tables:
  - name: article
    was: post
    fields:
      - name: headline
        was: title
        type: string
      - name: published
        type: bool
        default: true
    indexes:
      - name: article_headline
        columns: [headline]
        kind: unique
""",
        id="container-and-child-renames",
    ),
    pytest.param(
        """
functions:
  - name: greet
    params: [{name: who, type: string}]
    body: RETURN 'Hi ' + $who;
params:
  - name: region
    value: "'us'"
""",
        """
functions:
  - name: greet
    params: [{name: who, type: string}]
    body: RETURN 'Hello ' + $who;
  - name: shout
    params: [{name: text, type: string}]
    body: RETURN string::uppercase($text);
params:
  - name: region
    value: "'eu'"
""",
        id="functions-and-params",
    ),
    pytest.param(
        """
users:
  - name: admin
    roles: [owner]
""",
        """
users:
  - name: admin
    level: namespace
    roles: [owner]
  - name: reporter
    roles: [viewer, editor]
    session: 24h
""",
        id="users",
    ),
]


class TestRoundTrip:
    """Up then down returns to the starting schema."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("live_yaml, desired_yaml", SCENARIOS)
    async def test_up_then_down(self, live_yaml, desired_yaml):
        """Up reaches the desired schema, down restores the live one."""
        live = normalize(parse_yaml(live_yaml))
        desired = normalize(parse_yaml(desired_yaml))
        plan = Planner().plan(diff(desired, live))
        assert not plan.is_empty
        db = InMemoryDatabase(live)

        for statement in plan.up_statements:
            await db.execute(statement)
        assert diff(desired, normalize(await db.introspect())).is_empty

        for statement in plan.down_statements:
            await db.execute(statement)
        assert diff(live, normalize(await db.introspect())).is_empty

    @pytest.mark.asyncio
    async def test_down_restores_relation_endpoints(self):
        """Undoing an endpoint rename redefines the relation on the old name."""
        live = normalize(parse_yaml(PERSON_POST_WROTE))
        desired = normalize(parse_yaml(USER_ONLY))
        plan = Planner().plan(diff(desired, live))
        db = InMemoryDatabase(live)

        for statement in plan.up_statements + plan.down_statements:
            await db.execute(statement)

        restored = await db.introspect()
        assert restored.get_relation("wrote").endpoints == ("person", "post")
        assert restored.get_table("user") is None
