import time

from highlander import db, socketio
from highlander.models import Game
from highlander.socketio_events import broadcast_state
from .config import EngineConfig
from .deadlines import sweep_expired_deadlines, utcnow

_sweeper_started = False


def run_deadline_sweep(app) -> list:
    """One sweep over all open rounds; pushes a state update for every lock."""
    with app.app_context():
        config = EngineConfig.from_mapping(app.config)
        results = sweep_expired_deadlines(utcnow(), config)
        locked = [r for r in results if r['action'] == 'locked']
        for r in locked:
            broadcast_state(db.session.get(Game, r['game_id']))
        if locked:
            app.logger.info(
                f"[sweep] locked={len(locked)} games={[r['game_id'] for r in locked]} "
                f"auto_assigned={sum(r.get('auto_assigned', 0) for r in locked)}"
            )
        return results


def start_deadline_sweeper(app) -> None:
    """Start the periodic deadline sweep as a Socket.IO background task.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - No-ops when DEADLINE_SWEEP_INTERVAL_SEC is 0 (cron drives `flask sweep-deadlines` instead)
    - Starts at most one sweeper per process
    """
    global _sweeper_started
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    interval = int(app.config.get('DEADLINE_SWEEP_INTERVAL_SEC', 30))
    if interval <= 0 or _sweeper_started:
        return
    _sweeper_started = True
    app.logger.info(f"[sweeper-start] interval={interval}s")

    def _worker():
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        last_heartbeat = time.time()
        while True:
            socketio.sleep(interval)
            try:
                run_deadline_sweep(app)
            except Exception:
                app.logger.exception("[sweeper-error] deadline sweep failed")
            if hb and time.time() - last_heartbeat >= hb:
                last_heartbeat = time.time()
                app.logger.info(f"[sweeper-heartbeat] interval={interval}s")

    socketio.start_background_task(_worker)
