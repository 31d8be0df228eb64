"""initial highlander schema

Revision ID: 5c7a9e21b0d4
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c7a9e21b0d4'
down_revision = None
branch_labels = None
depends_on = None

game_status = sa.Enum('REGISTRATION', 'ACTIVE', 'COMPLETED', name='gamestatus')
round_status = sa.Enum('SELECTION_OPEN', 'SELECTION_LOCKED', 'CALCULATED', name='roundstatus')
end_reason = sa.Enum('SINGLE_SURVIVOR', 'ALL_ELIMINATED', 'MAX_ROUNDS', 'SEASON_END', name='endreason')
match_result = sa.Enum('HOME', 'AWAY', 'DRAW', name='matchresult')


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_user_username'), 'user', ['username'], unique=True)

    op.create_table(
        'team',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('code', sa.String(length=3), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('status', game_status, nullable=False),
        sa.Column('start_round', sa.Integer(), nullable=False),
        sa.Column('current_round', sa.Integer(), nullable=False),
        sa.Column('round_status', round_status, nullable=False),
        sa.Column('round_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('round_history', sa.Text(), nullable=True),
        sa.Column('end_reason', end_reason, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['created_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'ticket',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('eliminated_in_round', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint(
            '(is_active AND eliminated_in_round IS NULL) OR '
            '(NOT is_active AND eliminated_in_round IS NOT NULL)',
            name='ck_ticket_elimination_consistent',
        ),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['owner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_ticket_game_id'), 'ticket', ['game_id'], unique=False)
    op.create_index(op.f('ix_ticket_owner_id'), 'ticket', ['owner_id'], unique=False)

    op.create_table(
        'match',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('round', sa.Integer(), nullable=False),
        sa.Column('home_team_id', sa.Integer(), nullable=False),
        sa.Column('away_team_id', sa.Integer(), nullable=False),
        sa.Column('home_score', sa.Integer(), nullable=True),
        sa.Column('away_score', sa.Integer(), nullable=True),
        sa.Column('result', match_result, nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False),
        sa.Column('match_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('venue', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['home_team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['away_team_id'], ['team.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('round', 'home_team_id', 'away_team_id', name='uq_match_round_teams'),
    )
    op.create_index(op.f('ix_match_round'), 'match', ['round'], unique=False)

    op.create_table(
        'team_selection',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('team_id', sa.Integer(), nullable=False),
        sa.Column('round', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('is_auto_assigned', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['ticket_id'], ['ticket.id']),
        sa.ForeignKeyConstraint(['team_id'], ['team.id']),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_id', 'team_id', name='uq_selection_ticket_team'),
        sa.UniqueConstraint('ticket_id', 'round', name='uq_selection_ticket_round'),
    )
    op.create_index(op.f('ix_team_selection_ticket_id'), 'team_selection', ['ticket_id'], unique=False)
    op.create_index(op.f('ix_team_selection_game_id'), 'team_selection', ['game_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_team_selection_game_id'), table_name='team_selection')
    op.drop_index(op.f('ix_team_selection_ticket_id'), table_name='team_selection')
    op.drop_table('team_selection')
    op.drop_index(op.f('ix_match_round'), table_name='match')
    op.drop_table('match')
    op.drop_index(op.f('ix_ticket_owner_id'), table_name='ticket')
    op.drop_index(op.f('ix_ticket_game_id'), table_name='ticket')
    op.drop_table('ticket')
    op.drop_table('game')
    op.drop_table('team')
    op.drop_index(op.f('ix_user_username'), table_name='user')
    op.drop_table('user')
    bind = op.get_bind()
    for enum_type in (match_result, end_reason, round_status, game_status):
        enum_type.drop(bind, checkfirst=True)
