"""
WSGI entry point — profile API for gunicorn (`gunicorn wsgi:app`).

The scheduler and enrichment queue do not run here; see worker.py.
"""
from app import create_app

app = create_app()

if __name__ == '__main__':
    import os
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 8080)))
