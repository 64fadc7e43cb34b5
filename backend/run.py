from whiteflag import create_app, socketio
from whiteflag.services.protection import ensure_reconciled, Unavailable

app = create_app()

# Persisted state and in-memory timers must agree before serving anything.
# Runs on import so `flask run` and WSGI servers loading `run:app` get it too.
with app.app_context():
    try:
        ensure_reconciled(app)
    except Unavailable as exc:
        # Tables missing or database down; the first request retries
        app.logger.error(f"[reconcile] deferred: {exc.message}")

if __name__ == '__main__':
    socketio.run(app, debug=True, use_reloader=False)
