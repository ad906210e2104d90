"""time event, stored procedure event and parameter tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mssql

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _instant() -> sa.types.TypeEngine:
    return sa.DateTime().with_variant(mssql.DATETIME2(precision=7), "mssql")


def _has_table(table_name: str) -> bool:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    return table_name in set(insp.get_table_names())


def _existing_indexes(table_name: str) -> set[str]:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    try:
        return {str(i.get("name", "")) for i in insp.get_indexes(table_name)}
    except Exception:
        return set()


def _create_index_if_missing(name: str, table_name: str, cols: list[str]) -> None:
    if name in _existing_indexes(table_name):
        return
    op.create_index(name, table_name, cols, unique=False)


def upgrade() -> None:
    if not _has_table("Event_Mail_Service_Time_Events"):
        op.create_table(
            "Event_Mail_Service_Time_Events",
            sa.Column("ID", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("Job_Name", sa.String(200), nullable=False),
            sa.Column("File_Path", sa.String(1024), nullable=False),
            sa.Column("Arguments", sa.String(4000), nullable=True),
            sa.Column("Working_Directory", sa.String(1024), nullable=True),
            sa.Column("Enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("Interval_Minutes", sa.Integer(), nullable=True),
            sa.Column("Schedule_Anchor_Utc", _instant(), nullable=True),
            sa.Column("Max_Retries", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("Retry_Interval_Seconds", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("Next_Run_Time", _instant(), nullable=False),
            sa.Column("Last_Run_Time", _instant(), nullable=True),
        )
    _create_index_if_missing("idx_time_events_due", "Event_Mail_Service_Time_Events", ["Enabled", "Next_Run_Time"])

    if not _has_table("Event_Mail_Service_Stored_Procedure_Events"):
        op.create_table(
            "Event_Mail_Service_Stored_Procedure_Events",
            sa.Column("ID", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("Stored_Proc_Name", sa.String(256), nullable=False),
            sa.Column("Database_Name", sa.String(128), nullable=True),
            sa.Column("Poll_Interval_Seconds", sa.Integer(), nullable=False, server_default=sa.text("300")),
            sa.Column("Fire_On_Any_True", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("Email_Group_Alias", sa.String(1024), nullable=False),
            sa.Column("Enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("Next_Run_Time", _instant(), nullable=False),
            sa.Column("Last_Run_Time", _instant(), nullable=True),
        )
    _create_index_if_missing(
        "idx_sp_events_due", "Event_Mail_Service_Stored_Procedure_Events", ["Enabled", "Next_Run_Time"]
    )

    if not _has_table("SpParameters"):
        op.create_table(
            "SpParameters",
            sa.Column("ID", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "Stored_Proc_ID",
                sa.Integer(),
                sa.ForeignKey("Event_Mail_Service_Stored_Procedure_Events.ID"),
                nullable=False,
            ),
            sa.Column("Stored_Proc_Param", sa.String(128), nullable=False),
            sa.Column("Sql_Db_Type", sa.String(32), nullable=False),
            sa.Column("Direction", sa.String(16), nullable=True),
            sa.Column("Value_NVarChar", sa.Text(), nullable=True),
            sa.Column("Value_Int", sa.Integer(), nullable=True),
            sa.Column("Value_Decimal", sa.Numeric(38, 10), nullable=True),
            sa.Column("Value_DateTime2", _instant(), nullable=True),
            sa.Column("Value_Bit", sa.Boolean(), nullable=True),
        )
    _create_index_if_missing("idx_sp_parameters_proc", "SpParameters", ["Stored_Proc_ID", "ID"])


def downgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    for table, index in (
        ("SpParameters", "idx_sp_parameters_proc"),
        ("Event_Mail_Service_Stored_Procedure_Events", "idx_sp_events_due"),
        ("Event_Mail_Service_Time_Events", "idx_time_events_due"),
    ):
        if table not in tables:
            continue
        if index in _existing_indexes(table):
            op.drop_index(index, table_name=table)
        op.drop_table(table)
