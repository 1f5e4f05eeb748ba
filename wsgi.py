# wsgi.py - Gunicorn entrypoint (gunicorn wsgi:app)
import os

from docfill.app import create_app

app = create_app()

if __name__ == "__main__":
    from werkzeug.serving import run_simple
    run_simple("0.0.0.0", int(os.getenv("PORT", 5000)), app, use_debugger=True, use_reloader=True)
