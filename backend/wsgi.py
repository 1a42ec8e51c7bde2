# backend/wsgi.py
from mocards import create_app

app = create_app()
