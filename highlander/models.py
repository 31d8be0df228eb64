from highlander import db, bcrypt
from flask_login import UserMixin
from sqlalchemy.sql import func
import enum
import json


class GameStatus(enum.Enum):
    REGISTRATION = 'registration'
    ACTIVE = 'active'
    COMPLETED = 'completed'


class RoundStatus(enum.Enum):
    SELECTION_OPEN = 'selection_open'
    SELECTION_LOCKED = 'selection_locked'
    CALCULATED = 'calculated'


class MatchResult(enum.Enum):
    HOME = 'H'
    AWAY = 'A'
    DRAW = 'D'


class EndReason(enum.Enum):
    SINGLE_SURVIVOR = 'single_survivor'
    ALL_ELIMINATED = 'all_eliminated'
    MAX_ROUNDS = 'max_rounds'
    SEASON_END = 'season_end'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    tickets = db.relationship('Ticket', back_populates='owner')

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'is_admin': self.is_admin,
        }


class Team(db.Model):
    __tablename__ = 'team'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    code = db.Column(db.String(3), unique=True, nullable=False)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'code': self.code}


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    status = db.Column(db.Enum(GameStatus), default=GameStatus.REGISTRATION, nullable=False)
    # Matchday numbers of the league calendar
    start_round = db.Column(db.Integer, nullable=False)
    current_round = db.Column(db.Integer, nullable=False)
    round_status = db.Column(db.Enum(RoundStatus), default=RoundStatus.SELECTION_OPEN, nullable=False)
    round_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    round_history = db.Column(db.Text, nullable=True)  # JSON-encoded list of transitions
    end_reason = db.Column(db.Enum(EndReason), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    tickets = db.relationship('Ticket', back_populates='game', order_by='Ticket.id')

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if self.current_round is None:
            self.current_round = self.start_round
        if self.status is None:
            self.status = GameStatus.REGISTRATION
        if self.round_status is None:
            self.round_status = RoundStatus.SELECTION_OPEN

    @property
    def history(self):
        try:
            return json.loads(self.round_history) if self.round_history else []
        except ValueError:
            return []

    def history_with(self, *entries):
        """JSON for the current history plus ``entries``; does not modify the row."""
        history = self.history
        history.extend(entries)
        return json.dumps(history)

    def active_tickets(self):
        return Ticket.query.filter_by(game_id=self.id, is_active=True).order_by(Ticket.id).all()

    def to_dict(self):
        winners = []
        if self.status is GameStatus.COMPLETED:
            winners = [t.id for t in self.active_tickets()]
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'status': self.status.value,
            'start_round': self.start_round,
            'current_round': self.current_round,
            'round_status': self.round_status.value,
            'round_deadline': self.round_deadline.isoformat() if self.round_deadline else None,
            'end_reason': self.end_reason.value if self.end_reason else None,
            'ticket_count': Ticket.query.filter_by(game_id=self.id).count(),
            'active_ticket_count': Ticket.query.filter_by(game_id=self.id, is_active=True).count(),
            'winner_ticket_ids': winners,
            'round_history': self.history,
        }


class Ticket(db.Model):
    __tablename__ = 'ticket'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    eliminated_in_round = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    game = db.relationship('Game', back_populates='tickets')
    owner = db.relationship('User', back_populates='tickets')
    selections = db.relationship('TeamSelection', back_populates='ticket', order_by='TeamSelection.round')

    __table_args__ = (
        db.CheckConstraint(
            '(is_active AND eliminated_in_round IS NULL) OR '
            '(NOT is_active AND eliminated_in_round IS NOT NULL)',
            name='ck_ticket_elimination_consistent',
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'owner_id': self.owner_id,
            'is_active': self.is_active,
            'eliminated_in_round': self.eliminated_in_round,
        }


class Match(db.Model):
    __tablename__ = 'match'
    id = db.Column(db.Integer, primary_key=True)
    round = db.Column(db.Integer, nullable=False, index=True)
    home_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    away_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    home_score = db.Column(db.Integer, nullable=True)
    away_score = db.Column(db.Integer, nullable=True)
    result = db.Column(db.Enum(MatchResult), nullable=True)
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    match_date = db.Column(db.DateTime(timezone=True), nullable=True)
    venue = db.Column(db.String(128), nullable=True)

    home_team = db.relationship('Team', foreign_keys=[home_team_id])
    away_team = db.relationship('Team', foreign_keys=[away_team_id])

    __table_args__ = (
        db.UniqueConstraint('round', 'home_team_id', 'away_team_id', name='uq_match_round_teams'),
    )

    def involves(self, team_id):
        return team_id in (self.home_team_id, self.away_team_id)

    def to_dict(self):
        return {
            'id': self.id,
            'round': self.round,
            'home_team_id': self.home_team_id,
            'away_team_id': self.away_team_id,
            'home_score': self.home_score,
            'away_score': self.away_score,
            'result': self.result.value if self.result else None,
            'is_completed': self.is_completed,
            'match_date': self.match_date.isoformat() if self.match_date else None,
            'venue': self.venue,
        }


class TeamSelection(db.Model):
    __tablename__ = 'team_selection'
    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey('ticket.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False)
    round = db.Column(db.Integer, nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    is_auto_assigned = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), server_default=func.now())

    ticket = db.relationship('Ticket', back_populates='selections')
    team = db.relationship('Team')

    # A team is usable once per ticket; one pick per ticket per round
    __table_args__ = (
        db.UniqueConstraint('ticket_id', 'team_id', name='uq_selection_ticket_team'),
        db.UniqueConstraint('ticket_id', 'round', name='uq_selection_ticket_round'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'ticket_id': self.ticket_id,
            'team_id': self.team_id,
            'round': self.round,
            'game_id': self.game_id,
            'is_auto_assigned': self.is_auto_assigned,
        }
