# backend/wsgi.py
from stockcore import create_app

app = create_app()
