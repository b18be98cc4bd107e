"""Initial party game schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 10:00:00.000000

This migration creates all tables for the party game host service:
- teams: Team template catalog
- games: Game records with phase and active round pointer
- game_challenges: Ordered challenge list per game
- game_teams: Per-game team instances
- participants: One row per identity per game
- game_rounds: Round history
- round_lineups: Players selected by leaders each round
- round_votes: Loser predictions
- round_outcomes: Host-recorded team results
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

GAME_STATUS = ('draft', 'ready', 'live', 'completed', 'archived')
GAME_PHASE = ('lobby', 'leader_selection', 'voting', 'action', 'resolution', 'results')
ROUND_STATE = ('leader_selection', 'voting', 'action', 'resolution')

TABLE_OPTIONS = dict(mysql_engine='InnoDB', mysql_charset='utf8mb4', mysql_collate='utf8mb4_unicode_ci')


def upgrade() -> None:
    """Create all tables with indexes and constraints"""

    op.create_table('teams',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('slug', sa.String(50), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('color_hex', sa.String(7), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
        **TABLE_OPTIONS
    )
    op.create_index('ix_teams_id', 'teams', ['id'])

    op.create_table('games',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', sa.Enum(*GAME_STATUS, name='gamestatus'), nullable=False, server_default='draft'),
        sa.Column('phase', sa.Enum(*GAME_PHASE, name='gamephase'), nullable=False, server_default='lobby'),
        sa.Column('active_round_id', sa.String(36), nullable=True),
        sa.Column('current_round_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_teams', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('max_players_per_team', sa.Integer(), nullable=True),
        sa.Column('host_user_id', sa.String(36), nullable=True),
        sa.Column('lobby_code', sa.String(12), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        **TABLE_OPTIONS
    )
    op.create_index('ix_games_id', 'games', ['id'])
    op.create_index('ix_games_host_user_id', 'games', ['host_user_id'])

    op.create_table('game_challenges',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('participants_per_team', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['game_id'], ['games.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        **TABLE_OPTIONS
    )
    op.create_index('ix_game_challenges_id', 'game_challenges', ['id'])
    op.create_index('ix_game_challenges_game_id', 'game_challenges', ['game_id'])

    op.create_table('game_teams',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), nullable=False),
        sa.Column('template_team_id', sa.String(36), nullable=True),
        sa.Column('slug', sa.String(50), nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('color_hex', sa.String(7), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('leader_participant_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['game_id'], ['games.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['template_team_id'], ['teams.id']),
        sa.PrimaryKeyConstraint('id'),
        **TABLE_OPTIONS
    )
    op.create_index('ix_game_teams_id', 'game_teams', ['id'])
    op.create_index('ix_game_teams_game_id', 'game_teams', ['game_id'])

    op.create_table('participants',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('nickname', sa.String(50), nullable=False),
        sa.Column('game_team_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['game_id'], ['games.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['game_team_id'], ['game_teams.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'user_id', name='uq_participants_game_user'),
        **TABLE_OPTIONS
    )
    op.create_index('ix_participants_id', 'participants', ['id'])
    op.create_index('ix_participants_game_id', 'participants', ['game_id'])
    op.create_index('ix_participants_user_id', 'participants', ['user_id'])

    op.create_table('game_rounds',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('game_id', sa.String(36), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('state', sa.Enum(*ROUND_STATE, name='roundstate'), nullable=False,
                  server_default='leader_selection'),
        sa.Column('challenge_id', sa.String(36), nullable=True),
        sa.Column('leader_notes', sa.Text(), nullable=True),
        sa.Column('losing_team_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['game_id'], ['games.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['challenge_id'], ['game_challenges.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['losing_team_id'], ['game_teams.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'sequence', name='uq_game_rounds_game_sequence'),
        **TABLE_OPTIONS
    )
    op.create_index('ix_game_rounds_id', 'game_rounds', ['id'])
    op.create_index('ix_game_rounds_game_id', 'game_rounds', ['game_id'])

    # Round scoped tables share the same shape
    for table, extra_column, unique in (
        ('round_lineups', None, ('round_id', 'participant_id')),
        ('round_votes', None, ('round_id', 'participant_id')),
        ('round_outcomes', 'outcome', ('round_id', 'team_id')),
    ):
        columns = [
            sa.Column('id', sa.String(36), nullable=False),
            sa.Column('round_id', sa.String(36), nullable=False),
            sa.Column('team_id', sa.String(36), nullable=False),
        ]
        constraints = [
            sa.ForeignKeyConstraint(['round_id'], ['game_rounds.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['team_id'], ['game_teams.id'], ondelete='CASCADE'),
        ]
        if extra_column == 'outcome':
            columns += [
                sa.Column('is_loser', sa.Boolean(), nullable=False, server_default='0'),
                sa.Column('challenge_points', sa.Integer(), nullable=False, server_default='0'),
            ]
        else:
            columns.append(sa.Column('participant_id', sa.String(36), nullable=False))
            constraints.append(
                sa.ForeignKeyConstraint(['participant_id'], ['participants.id'], ondelete='CASCADE')
            )
        columns.append(
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'))
        )
        op.create_table(table,
            *columns,
            *constraints,
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint(*unique, name=f"uq_{table}_{'_'.join(c.replace('_id', '') for c in unique)}"),
            **TABLE_OPTIONS
        )
        op.create_index(f'ix_{table}_id', table, ['id'])
        op.create_index(f'ix_{table}_round_id', table, ['round_id'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order"""
    for table in ('round_outcomes', 'round_votes', 'round_lineups', 'game_rounds',
                  'participants', 'game_teams', 'game_challenges', 'games', 'teams'):
        op.drop_table(table)
