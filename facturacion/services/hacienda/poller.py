# facturacion/services/hacienda/poller.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Consulta periódica del estado de documentos ENVIADO.

- aceptado / rechazado -> ACEPTADO / RECHAZADO + respuesta de Hacienda + notificación
- cualquier otro estado -> sigue ENVIADO, intentos_envio + 1
- error en un documento -> se registra, intentos_envio + 1, se sigue con el resto

Documentos con intentos_envio >= techo quedan fuera de la consulta y se
reportan como estancados en el log.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, Optional

from django.conf import settings

from facturacion.models import DocumentoElectronico
from facturacion.services.notifications import (
    construir_notificacion,
    enviar_comprobante_receptor,
)
from facturacion.services.representacion_grafica import AlmacenPdf

from .auth import HaciendaTokenCache
from .client import ESTADO_ACEPTADO, HaciendaClient
from .repository import ComprobanteRepository, DjangoComprobanteRepository

logger = logging.getLogger("facturacion.hacienda")

Estado = DocumentoElectronico.Estado

MAX_INTENTOS_DEFAULT = 5


class HaciendaPoller:
    """
    Una corrida = `revisar_pendientes()`. Secuencial dentro de la corrida.

    Si otra corrida está en curso en el mismo proceso se omite (no bloquea).
    La exclusión entre procesos la hace la tarea Celery con un lock en caché.
    """

    def __init__(
        self,
        repository: Optional[ComprobanteRepository] = None,
        token_cache: Optional[HaciendaTokenCache] = None,
        client: Optional[HaciendaClient] = None,
        notifier: Callable[..., Dict[str, Any]] = enviar_comprobante_receptor,
        pdf_storage: Optional[AlmacenPdf] = None,
        max_intentos: Optional[int] = None,
    ) -> None:
        self.repository = repository or DjangoComprobanteRepository()
        self.token_cache = token_cache or HaciendaTokenCache()
        self.client = client or HaciendaClient()
        self.notifier = notifier
        self.pdf_storage = pdf_storage or AlmacenPdf()
        self.max_intentos = max_intentos or getattr(
            settings, "HACIENDA_POLL_MAX_INTENTOS", MAX_INTENTOS_DEFAULT
        )
        self._en_curso = threading.Lock()

    def revisar_pendientes(self) -> Dict[str, Any]:
        resumen: Dict[str, Any] = {
            "omitido": False,
            "revisados": 0,
            "aceptados": 0,
            "rechazados": 0,
            "en_proceso": 0,
            "fallidos": 0,
            "estancados": 0,
        }

        if not self._en_curso.acquire(blocking=False):
            logger.info("Revisión de comprobantes ya en curso; se omite esta corrida.")
            resumen["omitido"] = True
            return resumen

        try:
            pendientes = self.repository.find_pending_submitted(self.max_intentos)
            if pendientes:
                logger.info("Revisando %s comprobantes pendientes en Hacienda", len(pendientes))

            for documento in pendientes:
                resumen["revisados"] += 1
                resultado = self._revisar_documento(documento)
                resumen[resultado] += 1

            estancados = self.repository.find_stuck_submitted(self.max_intentos)
            resumen["estancados"] = len(estancados)
            if estancados:
                logger.warning(
                    "%s comprobantes ENVIADO alcanzaron el máximo de %s intentos: %s",
                    len(estancados),
                    self.max_intentos,
                    ", ".join(d.clave_numerica for d in estancados[:20]),
                )
        finally:
            self._en_curso.release()

        return resumen

    def _revisar_documento(self, documento: Any) -> str:
        try:
            emisor = documento.emisor
            token = self.token_cache.obtener_token(emisor.usuario_atv, emisor.password_atv)
            estado = self.client.consultar_estado(documento.clave_consulta, token)

            if not estado.resuelto:
                self.repository.update_document_state(documento.pk, incrementar_intentos=True)
                logger.debug(
                    "Documento %s sigue en proceso (ind-estado=%s)",
                    documento.pk,
                    estado.estado,
                )
                return "en_proceso"

            aceptado = estado.estado == ESTADO_ACEPTADO
            nuevo_estado = Estado.ACEPTADO if aceptado else Estado.RECHAZADO
            self.repository.update_document_state(
                documento.pk,
                estado=nuevo_estado,
                xml={"xml_respuesta_mh": estado.respuesta_xml} if estado.respuesta_xml else None,
                log=(
                    f"Resolución Ministerio: {estado.estado.upper()}",
                    json.dumps(estado.raw, ensure_ascii=False, default=str),
                ),
            )
            logger.info("Documento %s resuelto: %s", documento.pk, nuevo_estado)
        except Exception as exc:  # noqa: BLE001
            self._registrar_fallo(documento, exc)
            return "fallidos"

        self._notificar(documento, aceptado, estado.respuesta_xml)
        return "aceptados" if aceptado else "rechazados"

    def _registrar_fallo(self, documento: Any, exc: Exception) -> None:
        logger.warning(
            "Error consultando estado del documento %s (%s): %s",
            documento.pk,
            documento.clave_numerica,
            exc,
        )
        try:
            self.repository.update_document_state(
                documento.pk,
                incrementar_intentos=True,
                log=(
                    "Intento Fallido de Consulta",
                    json.dumps(
                        {
                            "error": exc.__class__.__name__,
                            "mensaje": str(exc),
                            "status_code": getattr(exc, "status_code", None),
                        },
                        ensure_ascii=False,
                    ),
                ),
            )
        except Exception:  # noqa: BLE001
            logger.exception("No se pudo registrar el intento fallido del documento %s", documento.pk)

    def _notificar(self, documento: Any, aceptado: bool, respuesta_xml: Optional[str]) -> None:
        """Best-effort: nunca afecta el estado del documento."""
        if not documento.correo_receptor:
            return
        try:
            notificacion = construir_notificacion(
                documento.clave_numerica,
                aceptado,
                emisor_nombre=documento.emisor.nombre,
            )
            almacen = getattr(documento, "xml_almacen", None)
            resultado = self.notifier(
                documento.correo_receptor,
                notificacion["asunto"],
                notificacion["cuerpo"],
                documento.clave_numerica,
                pdf=self.pdf_storage.leer(documento.clave_numerica),
                xml_firmado=almacen.xml_firmado if almacen else None,
                xml_respuesta=respuesta_xml,
            )
            if not resultado.get("ok"):
                logger.warning(
                    "Notificación del documento %s no enviada: %s",
                    documento.pk,
                    resultado.get("error"),
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error notificando documento %s: %s", documento.pk, exc)
