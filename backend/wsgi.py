# Overview: WSGI entry point (FLASK_APP=wsgi.py).

from stockroom import create_app

app = create_app()
