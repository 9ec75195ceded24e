# facturacion/tasks.py
from __future__ import annotations

import logging
from typing import Any, Dict

from celery import shared_task
from django.conf import settings
from django.core.cache import cache

from facturacion.apps import get_facturacion_service, get_poller
from facturacion.services.hacienda.exceptions import FacturacionError

logger = logging.getLogger(__name__)

LOCK_REVISION = "facturacion:revision-comprobantes"


# =====================================================
# Tarea periódica: resolución de comprobantes ENVIADO
# =====================================================


@shared_task(bind=True, ignore_result=True)
def revisar_comprobantes_pendientes_task(self) -> Dict[str, Any]:
    """
    Una corrida del poller (CELERY_BEAT_SCHEDULE la dispara cada
    HACIENDA_POLL_INTERVALO_SEGUNDOS).

    Si otra corrida sigue viva en cualquier worker, se omite.
    """
    ttl = getattr(settings, "HACIENDA_POLL_LOCK_TTL", 600)
    if not cache.add(LOCK_REVISION, "1", timeout=ttl):
        logger.info("revisar_comprobantes_pendientes_task: corrida previa en curso, se omite.")
        return {"ok": True, "omitido": True}

    try:
        resumen = get_poller().revisar_pendientes()
    finally:
        cache.delete(LOCK_REVISION)

    logger.info("revisar_comprobantes_pendientes_task finalizado: %s", resumen)
    return {"ok": True, **resumen}


# =====================================================
# Emisión encolada
# =====================================================


@shared_task(bind=True)
def emitir_comprobante_task(
    self,
    emisor_id: int,
    request_data: Dict[str, Any],
    tipo_documento: str = "01",
) -> Dict[str, Any]:
    """
    Emite un comprobante en background.

    Sin reintento automático: reintentar significa emitir un documento nuevo,
    lo decide quien encola.
    """
    logger.info(
        "emitir_comprobante_task iniciado para emisor_id=%s tipo=%s",
        emisor_id,
        tipo_documento,
    )
    try:
        resultado = get_facturacion_service().emitir_comprobante(
            emisor_id,
            request_data,
            tipo_documento=tipo_documento,
        )
    except FacturacionError as exc:
        logger.warning(
            "emitir_comprobante_task falló para emisor %s: %s",
            emisor_id,
            exc,
        )
        return {"ok": False, "error": exc.__class__.__name__, "mensaje": str(exc)}

    logger.info(
        "emitir_comprobante_task finalizado: documento=%s clave=%s",
        resultado.get("documento_id"),
        resultado.get("clave"),
    )
    return resultado


@shared_task(bind=True)
def emitir_mensaje_receptor_task(self, emisor_id: int, request_data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return get_facturacion_service().emitir_mensaje_receptor(emisor_id, request_data)
    except FacturacionError as exc:
        logger.warning(
            "emitir_mensaje_receptor_task falló para emisor %s: %s",
            emisor_id,
            exc,
        )
        return {"ok": False, "error": exc.__class__.__name__, "mensaje": str(exc)}
