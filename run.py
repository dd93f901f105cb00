from stifle import create_app, socketio
from stifle.services.events.cleanup import cleanup_old_events

app = create_app()

if __name__ == '__main__':
    # Purge expired raw events once at startup; `flask purge-events` for cron
    with app.app_context():
        cleanup_old_events()
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
