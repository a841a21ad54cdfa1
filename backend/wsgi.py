# backend/wsgi.py
# Entry point for `flask --app wsgi` and WSGI servers (gunicorn wsgi:app).
# With STARTUP_TASKS_ENABLED the three startup phases run before the app is
# served; any failure exits the process with code 1. Under the flask CLI the
# phases are left to `flask system startup`.

import logging
import sys

from warehouse import create_app
from warehouse.services import startup_service

app = create_app()

if app.config.get("STARTUP_TASKS_ENABLED") and "flask" not in sys.argv[0]:
    with app.app_context():
        try:
            startup_service.run_startup()
        except Exception:
            logging.getLogger(__name__).exception("Startup failed")
            sys.exit(1)
