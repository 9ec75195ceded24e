# facturacion/apps.py
from __future__ import annotations

from django.apps import AppConfig, apps


class FacturacionConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "facturacion"
    verbose_name = "Facturación electrónica (Hacienda CR)"

    token_cache = None
    poller = None

    def ready(self) -> None:
        # Instancias únicas por proceso: caché de tokens IDP y poller
        from facturacion.services.hacienda.auth import HaciendaTokenCache
        from facturacion.services.hacienda.poller import HaciendaPoller

        self.token_cache = HaciendaTokenCache()
        self.poller = HaciendaPoller(token_cache=self.token_cache)


def get_token_cache():
    return apps.get_app_config("facturacion").token_cache


def get_poller():
    return apps.get_app_config("facturacion").poller


def get_facturacion_service():
    from facturacion.services.hacienda.workflow import FacturacionService

    return FacturacionService(token_cache=get_token_cache())
