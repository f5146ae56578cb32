"""Tests for the RetentionEngine orchestration."""

import logging
import os

import pytest

from dbclone.config import RetentionPolicy, SyncConfig, WorkspaceStrategy
from dbclone.core.engine import RetentionEngine
from dbclone.core.executor import LimitExecutor
from dbclone.exceptions import ExecutionError, TableNotFoundError
from dbclone.workspace import Workspace
from tests.conftest import NOW, create_schema, insert_rows

SHOP_TABLES = {"customers", "products", "orders", "order_items"}


def make_config(limits: dict, **kwargs) -> SyncConfig:
    return SyncConfig(
        database_url="sqlite:///:memory:",
        limits=RetentionPolicy.from_mapping(limits),
        **kwargs,
    )


def staged_ids(adapter, workspace: Workspace, table: str) -> set[int]:
    return set(adapter.fetch_column(f'SELECT "id" FROM {workspace.qualified_name(table)}'))


class TestRun:
    """Tests for RetentionEngine.run on an in-memory database."""

    def test_stages_every_table_parents_first(self, shop_db):
        engine = RetentionEngine(make_config({}), adapter=shop_db, now=NOW)
        result = engine.run()

        assert set(result.staged) == SHOP_TABLES
        assert result.staged.index("customers") < result.staged.index("orders")
        assert result.staged.index("orders") < result.staged.index("order_items")
        assert result.limits == {}
        assert result.ok

    def test_logs_per_table_progress(self, shop_db, caplog):
        engine = RetentionEngine(make_config({"orders": {"max_rows": 4}}), adapter=shop_db, now=NOW)
        with caplog.at_level(logging.INFO, logger="dbclone"):
            engine.run()

        progress = [
            record.context
            for record in caplog.records
            if record.getMessage().startswith("Processing ")
        ]
        staged = [ctx for ctx in progress if ctx["operation"] == "stage"]
        assert [ctx["progress"] for ctx in staged] == ["1/4", "2/4", "3/4", "4/4"]
        [items] = [ctx for ctx in staged if ctx["table"] == "order_items"]
        assert items["row_count"] == 20
        [limited] = [ctx for ctx in progress if ctx["operation"] == "limit"]
        assert limited["table"] == "orders"
        assert limited["row_count"] == 4
        assert limited["progress"] == "1/1"

    def test_limits_directly_limited_tables_only(self, shop_db):
        config = make_config({"customers": {"max_rows": 2}})
        engine = RetentionEngine(config, adapter=shop_db, now=NOW)
        ws = Workspace(shop_db)
        try:
            result = engine.run(ws)

            assert list(result.limits) == ["customers"]
            assert result.limits["customers"].rows_removed == 3
            assert result.limits["customers"].rows_kept == 2
            assert ws.count("orders") == 10
        finally:
            ws.cleanup_all()

    def test_orphans_reported_without_cascade(self, shop_db):
        config = make_config({"customers": {"max_rows": 2}})
        engine = RetentionEngine(config, adapter=shop_db, now=NOW)
        result = engine.run()

        validation = result.validation_result
        assert validation is not None
        assert not validation.is_valid
        # Orders 1..6 belong to customers 1..3, none of which were kept
        assert validation.total_orphans == 6
        assert {orphan.table for orphan in validation.orphaned_records} == {"orders"}
        assert not result.ok

    def test_cascade_trims_dependent_tables(self, shop_db):
        config = make_config({"customers": {"max_rows": 2}}, cascade=True)
        ws = Workspace(shop_db)
        try:
            result = RetentionEngine(config, adapter=shop_db, now=NOW).run(ws)

            assert list(result.limits) == ["customers", "orders", "order_items"]
            assert staged_ids(shop_db, ws, "customers") == {4, 5}
            assert staged_ids(shop_db, ws, "orders") == {7, 8, 9, 10}
            assert staged_ids(shop_db, ws, "order_items") == set(range(13, 21))
            assert ws.count("products") == 3
            assert result.total_removed() == 3 + 6 + 12
            assert result.validation_result.is_valid
            assert result.ok
        finally:
            ws.cleanup_all()

    def test_bottom_up_keeps_referenced_parents(self, shop_db):
        config = make_config({"customers": {"max_rows": 1}, "orders": {"max_rows": 4}})
        result = RetentionEngine(config, adapter=shop_db, now=NOW).run()

        # Orders 7..10 reference customers 4 and 5; customer 5 is the intrinsic row
        assert result.limits["customers"].rows_kept == 2
        assert result.limits["orders"].rows_kept == 4
        # order_items has no limit and is not cascaded, so its orphans are reported
        orphans = result.validation_result.orphaned_records
        assert {orphan.table for orphan in orphans} == {"order_items"}

    def test_skip_validation(self, shop_db):
        config = make_config({"customers": {"max_rows": 2}}, validate=False)
        result = RetentionEngine(config, adapter=shop_db, now=NOW).run()
        assert result.validation_result is None
        assert result.ok

    def test_generated_workspace_is_dropped(self, shop_db):
        result = RetentionEngine(make_config({}), adapter=shop_db, now=NOW).run()

        assert not result.kept
        assert not shop_db.table_exists("customers", result.workspace)

    def test_named_workspace_is_kept(self, shop_db):
        config = make_config({"orders": {"max_rows": 3}}, workspace_name="snapshot")
        result = RetentionEngine(config, adapter=shop_db, now=NOW).run()

        assert result.kept
        assert result.workspace == "snapshot"
        assert shop_db.count_rows("orders", "snapshot") == 3
        shop_db.drop_namespace("snapshot")

    def test_tables_strategy(self, shop_db):
        config = make_config(
            {"orders": {"max_rows": 3}},
            workspace_strategy=WorkspaceStrategy.TABLES,
            workspace_name="keep",
        )
        RetentionEngine(config, adapter=shop_db, now=NOW).run()

        assert shop_db.count_rows("_dbclone_orders") == 3
        assert shop_db.count_rows("orders") == 10

    def test_excluded_tables_are_not_staged(self, shop_db):
        config = make_config(
            {"orders": {"max_rows": 3}}, exclude_tables={"products"}, cascade=True
        )
        result = RetentionEngine(config, adapter=shop_db, now=NOW).run()

        assert "products" not in result.staged
        assert result.validation_result.is_valid

    def test_source_is_never_modified(self, shop_db):
        config = make_config({"customers": {"max_rows": 1}}, cascade=True)
        RetentionEngine(config, adapter=shop_db, now=NOW).run()

        assert shop_db.count_rows("customers") == 5
        assert shop_db.count_rows("order_items") == 20


@pytest.fixture
def teams_db(sqlite_adapter):
    """
    teams.owner_id -> members, members.team_id -> teams.

    Three teams owned by members 2, 4 and 6; member n is on team (n + 1) // 2.
    """
    create_schema(
        sqlite_adapter,
        'CREATE TABLE "teams" ("id" INTEGER PRIMARY KEY, '
        '"owner_id" INTEGER REFERENCES "members"("id"))',
        'CREATE TABLE "members" ("id" INTEGER PRIMARY KEY, '
        '"team_id" INTEGER REFERENCES "teams"("id"))',
    )
    insert_rows(sqlite_adapter, "teams", [{"id": i, "owner_id": i * 2} for i in (1, 2, 3)])
    insert_rows(
        sqlite_adapter, "members", [{"id": i, "team_id": (i + 1) // 2} for i in range(1, 7)]
    )
    return sqlite_adapter


class TestCycles:
    """Tests for running keep-sets over mutually referencing tables."""

    def test_cycle_keeps_more_rather_than_breaking_references(self, teams_db):
        config = make_config({"teams": {"max_rows": 1}, "members": {"max_rows": 2}})
        engine = RetentionEngine(config, adapter=teams_db, now=NOW)
        ws = Workspace(teams_db)
        try:
            result = engine.run(ws)

            # Every team is referenced by a kept member, so the cap of one is exceeded
            assert result.limits["teams"].rows_removed == 0
            assert result.limits["teams"].rows_kept == 3
            # Members 5 and 6 by cap, plus the owners of the kept teams
            assert staged_ids(teams_db, ws, "members") == {2, 4, 5, 6}
            assert result.validation_result.is_valid
        finally:
            ws.cleanup_all()

    def test_single_limit_on_cycle(self, teams_db):
        config = make_config({"members": {"max_rows": 1}})
        engine = RetentionEngine(config, adapter=teams_db, now=NOW)
        ws = Workspace(teams_db)
        try:
            result = engine.run(ws)

            assert list(result.limits) == ["members"]
            assert staged_ids(teams_db, ws, "members") == {6}
            assert ws.count("teams") == 3
            # Teams 1 and 2 lose their owners: reported, not silently repaired
            assert not result.validation_result.is_valid
            assert {o.table for o in result.validation_result.orphaned_records} == {"teams"}
        finally:
            ws.cleanup_all()


class TestFailures:
    """Tests for per-table failure handling."""

    @pytest.fixture
    def failing_orders(self, monkeypatch):
        original = LimitExecutor.apply

        def apply(self, table, keep_set, workspace):
            if table == "orders":
                raise ExecutionError(table, "simulated failure")
            return original(self, table, keep_set, workspace)

        monkeypatch.setattr(LimitExecutor, "apply", apply)

    def test_continues_after_failure(self, shop_db, failing_orders):
        config = make_config(
            {"customers": {"max_rows": 2}, "orders": {"max_rows": 3}}, validate=False
        )
        result = RetentionEngine(config, adapter=shop_db, now=NOW).run()

        assert [failed.table for failed in result.failed] == ["orders"]
        assert result.limits["orders"].error.reason == "simulated failure"
        assert result.limits["customers"].ok
        assert not result.ok

    def test_fail_fast(self, shop_db, failing_orders):
        config = make_config(
            {"customers": {"max_rows": 2}, "orders": {"max_rows": 3}}, fail_fast=True
        )
        engine = RetentionEngine(config, adapter=shop_db, now=NOW)

        with pytest.raises(ExecutionError, match="simulated failure"):
            engine.run()


class TestPlanAndConnection:
    """Tests for planning and connection ownership."""

    def test_plan_unknown_table(self, shop_db):
        engine = RetentionEngine(make_config({"orders": {"max_rows": 1}}), adapter=shop_db, now=NOW)
        with pytest.raises(TableNotFoundError, match="ordrs"):
            engine.plan(["ordrs"])

    def test_plan_is_read_only(self, shop_db):
        engine = RetentionEngine(make_config({"orders": {"max_rows": 1}}), adapter=shop_db, now=NOW)
        plan = engine.plan()

        assert list(plan) == ["orders"]
        assert shop_db.count_rows("orders") == 10

    def test_injected_adapter_is_not_closed(self, shop_db):
        with RetentionEngine(make_config({}), adapter=shop_db, now=NOW) as engine:
            engine.load()
        assert shop_db.count_rows("orders") == 10

    def test_engine_opens_and_closes_its_own_connection(self, shop_url, tmp_path):
        config = SyncConfig(
            database_url=shop_url,
            limits=RetentionPolicy.from_mapping({"orders": {"max_rows": 2}}),
            cascade=True,
        )
        with RetentionEngine(config, now=NOW) as engine:
            result = engine.run()
            assert engine.adapter is not None

        assert engine.adapter is None
        assert result.limits["orders"].rows_kept == 2
        assert result.limits["order_items"].rows_kept == 4
        # The attached staging database file is removed with the workspace
        assert not os.path.exists(tmp_path / f"{result.workspace}.sqlite3")
