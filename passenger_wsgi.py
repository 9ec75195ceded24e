# passenger_wsgi.py: entrada WSGI para cPanel/Passenger

import os
import sys

# Asegura el path del proyecto
PROJECT_PATH = os.path.dirname(os.path.abspath(__file__))
if PROJECT_PATH not in sys.path:
    sys.path.insert(0, PROJECT_PATH)

# Módulo de settings
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings")

# WSGI callable
from django.core.wsgi import get_wsgi_application
application = get_wsgi_application()
