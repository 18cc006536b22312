"""
Pytest configuration shared by the unit and integration suites
"""

import os

# Set test environment before any test module imports the app
os.environ.pop('DATABASE_URL', None)
os.environ.update({
    'FLASK_ENV': 'testing',
    'TESTING': 'true',
    'FLEET_TIMEZONE': 'America/Los_Angeles',
    'ENABLE_BACKGROUND_TASKS': 'false',
    'NOTIFICATIONS_ENABLED': 'false',
    'USE_JSON_LOGGING': 'false',
    'ENABLE_FILE_LOGGING': 'false',
})
