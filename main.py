import atexit
import os
from app import create_app
from utils.background_tasks import cleanup_background_tasks

# Create the app instance for gunicorn
app = create_app()

# Stop the hold sweep thread with the worker
if app.config['ENABLE_BACKGROUND_TASKS']:
    atexit.register(cleanup_background_tasks)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=False)
