import logging

from duochat import create_app, socketio
from duochat.tasks import start_background_jobs

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
# werkzeug logs every polling request otherwise
logging.getLogger('werkzeug').setLevel(logging.WARNING)

app = create_app()

if __name__ == '__main__':
    start_background_jobs(app)
    try:
        socketio.run(app, host=app.config['HOST'], port=app.config['PORT'],
                     debug=app.config['DEBUG'], use_reloader=False, allow_unsafe_werkzeug=True)
    finally:
        app.extensions['duochat'].store.flush()
