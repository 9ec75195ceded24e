# facturacion/services/hacienda/auth.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Caché de tokens del IDP de Hacienda (grant_type=password).

Una sola instancia por proceso, creada en FacturacionConfig.ready() y
compartida por el orquestador y el poller. No persiste nada: al reiniciar
el proceso los tokens se vuelven a pedir bajo demanda.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests
from django.conf import settings

from .exceptions import AuthError

logger = logging.getLogger("facturacion.hacienda")

IDP_CLIENT_ID_DEFAULT = "api-stag"
MARGEN_SEGURIDAD_DEFAULT = 30  # segundos


@dataclass
class TokenEnCache:
    token: str
    expira_en: float  # instante absoluto (epoch, segundos)


class HaciendaTokenCache:
    """
    `obtener_token(usuario, password)`:

    - Si hay token para `usuario` y le quedan más de `margen_segundos`, se
      devuelve sin llamar al IDP.
    - Si no, se pide uno nuevo, se guarda con expiración now + expires_in y
      se devuelve.

    Las secciones críticas solo cubren lectura/escritura del dict; la llamada
    HTTP va fuera del lock.
    """

    def __init__(
        self,
        idp_url: Optional[str] = None,
        client_id: Optional[str] = None,
        margen_segundos: Optional[int] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.idp_url = idp_url or getattr(settings, "HACIENDA_IDP_URL", "")
        self.client_id = client_id or getattr(
            settings, "HACIENDA_IDP_CLIENT_ID", IDP_CLIENT_ID_DEFAULT
        )
        self.margen_segundos = (
            margen_segundos
            if margen_segundos is not None
            else getattr(settings, "HACIENDA_TOKEN_MARGEN_SEGUNDOS", MARGEN_SEGURIDAD_DEFAULT)
        )
        self.timeout = timeout or getattr(settings, "HACIENDA_REQUEST_TIMEOUT", 20)
        self.session = session or requests.Session()
        self._clock = clock
        self._tokens: Dict[str, TokenEnCache] = {}
        self._lock = threading.Lock()

    def _vigente(self, usuario: str) -> Optional[str]:
        with self._lock:
            entrada = self._tokens.get(usuario)
        if entrada is None:
            return None
        if entrada.expira_en - self._clock() > self.margen_segundos:
            return entrada.token
        return None

    def obtener_token(self, usuario: str, password: str) -> str:
        if not usuario or not password:
            raise AuthError("El emisor no tiene credenciales ATV configuradas.")

        token = self._vigente(usuario)
        if token is not None:
            return token

        token, expires_in = self._solicitar_token(usuario, password)
        with self._lock:
            self._tokens[usuario] = TokenEnCache(
                token=token,
                expira_en=self._clock() + expires_in,
            )
        logger.info("Token IDP renovado para %s (expira en %ss)", usuario, expires_in)
        return token

    def invalidar(self, usuario: Optional[str] = None) -> None:
        with self._lock:
            if usuario is None:
                self._tokens.clear()
            else:
                self._tokens.pop(usuario, None)

    def _solicitar_token(self, usuario: str, password: str) -> tuple:
        if not self.idp_url:
            raise AuthError("Falta configurar HACIENDA_IDP_URL.")

        data = {
            "grant_type": "password",
            "client_id": self.client_id,
            "username": usuario,
            "password": password,
        }
        try:
            response = self.session.post(
                self.idp_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("IDP de Hacienda inalcanzable: %s", exc)
            raise AuthError(f"IDP de Hacienda inalcanzable: {exc}") from exc

        if response.status_code != 200:
            logger.warning(
                "IDP rechazó credenciales de %s (HTTP %s)",
                usuario,
                response.status_code,
            )
            raise AuthError(
                f"No se pudo obtener el token de Hacienda (HTTP {response.status_code})."
            )

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in") or 0)
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError(f"Respuesta inválida del IDP: {exc}") from exc

        if not token:
            raise AuthError("El IDP devolvió un access_token vacío.")
        return token, expires_in
