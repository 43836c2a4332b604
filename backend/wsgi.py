# backend/wsgi.py
from gasledger import create_app

app = create_app()
