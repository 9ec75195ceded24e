# core/celery.py
from __future__ import annotations

import os

from celery import Celery

# Módulo de settings de Django por defecto
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings")

# Nombre de la app Celery (usamos el mismo que el proyecto Django)
app = Celery("core")

# Leer configuración desde settings.py, con prefijo CELERY_
# Ejemplo: CELERY_BROKER_URL, CELERY_BEAT_SCHEDULE, etc.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Autodescubre tasks.py en todas las apps instaladas
# (facturacion.tasks: revisión periódica de comprobantes y emisión encolada)
app.autodiscover_tasks()
