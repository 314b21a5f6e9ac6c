"""Initial schema: tournaments, courts, court groups, divisions, pools, units,
encounters, allocations, standings

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("timezone", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "courtgroup",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "name", name="uq_courtgroup_tournament_name"),
    )
    op.create_index("ix_courtgroup_tournament_id", "courtgroup", ["tournament_id"])

    op.create_table(
        "court",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("court_group_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="available"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["court_group_id"], ["courtgroup.id"]),
        sa.UniqueConstraint("tournament_id", "label", name="uq_court_tournament_label"),
    )
    op.create_index("ix_court_tournament_id", "court", ["tournament_id"])
    op.create_index("ix_court_court_group_id", "court", ["court_group_id"])

    op.create_table(
        "division",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("playoff_from_pools", sa.Integer(), nullable=False),
        sa.Column("default_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("default_rest_minutes", sa.Integer(), nullable=False),
        sa.Column("schedule_ready", sa.Boolean(), nullable=False),
        sa.Column("units_assigned", sa.Boolean(), nullable=False),
        sa.Column("schedule_status", sa.String(), nullable=False),
        sa.Column("schedule_revision", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
    )
    op.create_index("ix_division_tournament_id", "division", ["tournament_id"])

    op.create_table(
        "pool",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("division_id", sa.Integer(), nullable=False),
        sa.Column("pool_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["division_id"], ["division.id"]),
        sa.UniqueConstraint("division_id", "pool_number", name="uq_pool_division_number"),
    )
    op.create_index("ix_pool_division_id", "pool", ["division_id"])

    op.create_table(
        "unit",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("division_id", sa.Integer(), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["division_id"], ["division.id"]),
        sa.ForeignKeyConstraint(["pool_id"], ["pool.id"]),
        sa.UniqueConstraint("division_id", "name", name="uq_division_unit_name"),
    )
    op.create_index("ix_unit_division_id", "unit", ["division_id"])
    op.create_index("ix_unit_pool_id", "unit", ["pool_id"])

    op.create_table(
        "encounter",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("division_id", sa.Integer(), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=True),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(), nullable=True),
        sa.Column("unit_a_id", sa.Integer(), nullable=True),
        sa.Column("unit_b_id", sa.Integer(), nullable=True),
        sa.Column("is_bye", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("score_json", sa.JSON(), nullable=True),
        sa.Column("winner_unit_id", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("court_id", sa.Integer(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["division_id"], ["division.id"]),
        sa.ForeignKeyConstraint(["pool_id"], ["pool.id"]),
        sa.ForeignKeyConstraint(["unit_a_id"], ["unit.id"]),
        sa.ForeignKeyConstraint(["unit_b_id"], ["unit.id"]),
        sa.ForeignKeyConstraint(["winner_unit_id"], ["unit.id"]),
        sa.ForeignKeyConstraint(["court_id"], ["court.id"]),
    )
    op.create_index("ix_encounter_division_id", "encounter", ["division_id"])
    op.create_index("ix_encounter_pool_id", "encounter", ["pool_id"])

    op.create_table(
        "allocation",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("encounter_id", sa.Integer(), nullable=False),
        sa.Column("division_id", sa.Integer(), nullable=False),
        sa.Column("court_id", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("is_pending", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["encounter_id"], ["encounter.id"]),
        sa.ForeignKeyConstraint(["division_id"], ["division.id"]),
        sa.ForeignKeyConstraint(["court_id"], ["court.id"]),
        sa.UniqueConstraint("encounter_id", name="uq_allocation_encounter"),
    )
    op.create_index("ix_allocation_division_id", "allocation", ["division_id"])
    op.create_index("ix_allocation_court_id", "allocation", ["court_id"])

    op.create_table(
        "standing",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pool_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("rank_overridden", sa.Boolean(), nullable=False),
        sa.Column("matches_played", sa.Integer(), nullable=False),
        sa.Column("matches_won", sa.Integer(), nullable=False),
        sa.Column("matches_lost", sa.Integer(), nullable=False),
        sa.Column("games_won", sa.Integer(), nullable=False),
        sa.Column("games_lost", sa.Integer(), nullable=False),
        sa.Column("points_for", sa.Integer(), nullable=False),
        sa.Column("points_against", sa.Integer(), nullable=False),
        sa.Column("head_to_head_wins", sa.Integer(), nullable=False),
        sa.Column("advanced_to_playoff", sa.Boolean(), nullable=False),
        sa.Column("overall_rank", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["pool_id"], ["pool.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["unit.id"]),
        sa.UniqueConstraint("pool_id", "unit_id", name="uq_standing_pool_unit"),
    )
    op.create_index("ix_standing_pool_id", "standing", ["pool_id"])
    op.create_index("ix_standing_unit_id", "standing", ["unit_id"])


def downgrade() -> None:
    op.drop_table("standing")
    op.drop_table("allocation")
    op.drop_table("encounter")
    op.drop_table("unit")
    op.drop_table("pool")
    op.drop_table("division")
    op.drop_table("court")
    op.drop_table("courtgroup")
    op.drop_table("tournament")
