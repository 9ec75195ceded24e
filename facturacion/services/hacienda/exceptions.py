# facturacion/services/hacienda/exceptions.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Jerarquía de errores del núcleo de facturación electrónica (Hacienda CR).

- ValidationError: solicitud de emisión mal formada (culpa del cliente, no se reintenta).
- NotFoundError: emisor inexistente.
- CertificateError: PIN incorrecto o .p12 dañado (corregir configuración del emisor).
- SigningError: fallo de esquema/canonicalización al firmar (defecto).
- AuthError: rechazo o caída del IDP de Hacienda (reintentable en un intento futuro).
- TransportError: endpoint de recepción/consulta inalcanzable o respuesta no exitosa.
- InvariantViolation: chequeos internos (clave mal armada, transición ilegal, etc.).
"""

from typing import Optional


class FacturacionError(Exception):
    """Base de todos los errores del núcleo."""


class ValidationError(FacturacionError):
    """Solicitud de emisión con campos faltantes o inválidos."""


class InvalidInput(ValidationError):
    """Un campo no cabe en el ancho asignado de consecutivo/clave."""


class NotFoundError(FacturacionError):
    """Emisor (o documento) inexistente."""


class CertificateError(FacturacionError):
    """Errores relacionados con certificado/carga de PKCS12."""


class SigningError(FacturacionError):
    """
    Error al construir la firma XAdES-EPES.

    `paso` indica la etapa que falló (parseo, namespace, digest_documento,
    signed_properties, firma_rsa, serializacion...).
    """

    def __init__(self, paso: str, mensaje: str) -> None:
        self.paso = paso
        self.mensaje = mensaje
        super().__init__(f"[{paso}] {mensaje}")


class SchemaError(SigningError):
    """El documento no declara namespace o no es XML bien formado."""


class AuthError(FacturacionError):
    """No se pudo obtener token del IDP de Hacienda."""


class TransportError(FacturacionError):
    """
    Falla de comunicación con recepción/consulta de Hacienda.

    `retryable` es True para timeouts, errores de red y respuestas 5xx/4xx
    transitorias; el techo de intentos del poller acota los reintentos.
    """

    def __init__(
        self,
        mensaje: str,
        status_code: Optional[int] = None,
        respuesta: Optional[str] = None,
        retryable: bool = True,
    ) -> None:
        self.status_code = status_code
        self.respuesta = respuesta
        self.retryable = retryable
        super().__init__(mensaje)


class InvariantViolation(FacturacionError):
    """Chequeo interno; nunca debería ocurrir."""
