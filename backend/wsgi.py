# backend/wsgi.py
from hpstock import create_app

app = create_app()
