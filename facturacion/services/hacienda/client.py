# facturacion/services/hacienda/client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from django.conf import settings

from .exceptions import TransportError

logger = logging.getLogger("facturacion.hacienda")

HACIENDA_API_URL_DEFAULT = "https://api.hacienda.go.cr/fe/recepcion"

# Aceptación provisional: el comprobante entró a la cola de Hacienda
STATUS_RECIBIDO = 202

ESTADO_ACEPTADO = "aceptado"
ESTADO_RECHAZADO = "rechazado"
ESTADO_PROCESANDO = "procesando"


@dataclass
class EnvioResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass
class EstadoComprobante:
    """
    Resultado normalizado de GET /recepcion/{clave}.

    `estado` en minúsculas: aceptado | rechazado | procesando | recibido | error ...
    `respuesta_xml` es el MensajeHacienda en base64 (cuando ya hay resolución).
    """

    clave: str
    estado: str
    respuesta_xml: Optional[str]
    raw: Dict[str, Any]

    @property
    def resuelto(self) -> bool:
        return self.estado in (ESTADO_ACEPTADO, ESTADO_RECHAZADO)


class HaciendaClient:
    """
    Cliente REST de la API de recepción de comprobantes de Hacienda CR:

    - POST {base}                -> envío (202 = recibido)
    - GET  {base}/{clave}        -> consulta de estado

    Sin reintentos internos: el reintento lo acota el poller por intentos_envio.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (
            base_url or getattr(settings, "HACIENDA_API_URL", HACIENDA_API_URL_DEFAULT)
        ).rstrip("/")
        self.timeout = timeout or getattr(settings, "HACIENDA_REQUEST_TIMEOUT", 20)

        if session is None:
            session = requests.Session()
            session.verify = getattr(settings, "HACIENDA_SSL_VERIFY", True)
            session.headers.update({"User-Agent": "FacturacionCR/1.0 (Python/requests)"})
        self.session = session

        logger.debug(
            "HaciendaClient inicializado [base_url=%s, timeout=%s]",
            self.base_url,
            self.timeout,
        )

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def enviar_comprobante(self, payload: Dict[str, Any], token: str) -> EnvioResponse:
        """
        Envía el comprobante firmado. Cualquier código distinto de 202 es
        TransportError (con status y cuerpo para el log de auditoría).
        """
        clave = payload.get("clave")
        try:
            response = self.session.post(
                self.base_url,
                json=payload,
                headers=self._headers(token),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning("Timeout enviando comprobante %s: %s", clave, exc)
            raise TransportError(f"Timeout en recepción de Hacienda: {exc}") from exc
        except requests.RequestException as exc:
            logger.warning("Error de red enviando comprobante %s: %s", clave, exc)
            raise TransportError(f"Error de red con recepción de Hacienda: {exc}") from exc

        if response.status_code != STATUS_RECIBIDO:
            cuerpo = response.text or ""
            logger.warning(
                "Recepción rechazó el comprobante %s (HTTP %s, x-error-cause=%s)",
                clave,
                response.status_code,
                response.headers.get("X-Error-Cause"),
            )
            raise TransportError(
                f"Recepción de Hacienda respondió HTTP {response.status_code}.",
                status_code=response.status_code,
                respuesta=response.headers.get("X-Error-Cause") or cuerpo,
                retryable=response.status_code >= 500,
            )

        logger.info("Comprobante %s recibido por Hacienda (HTTP 202)", clave)
        return EnvioResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text or "",
        )

    def consultar_estado(self, clave: str, token: str) -> EstadoComprobante:
        url = f"{self.base_url}/{clave}"
        try:
            response = self.session.get(
                url,
                headers=self._headers(token),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise TransportError(f"Timeout consultando {clave}: {exc}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Error de red consultando {clave}: {exc}") from exc

        if response.status_code != 200:
            # 404: Hacienda aún no indexa la clave
            raise TransportError(
                f"Consulta de {clave} respondió HTTP {response.status_code}.",
                status_code=response.status_code,
                respuesta=response.text or "",
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(f"Respuesta de consulta no es JSON: {exc}") from exc

        estado = str(data.get("ind-estado") or ESTADO_PROCESANDO).strip().lower()
        return EstadoComprobante(
            clave=data.get("clave") or clave,
            estado=estado,
            respuesta_xml=data.get("respuesta-xml"),
            raw=data,
        )
