# facturacion/services/hacienda/certificado.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Extracción de llave privada y certificado desde el .p12 (llave criptográfica
ATV) de cada emisor.

Es el único lugar donde se materializa la llave privada; no persistirla.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import pytz
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from django.utils import timezone

from .exceptions import CertificateError

logger = logging.getLogger("facturacion.hacienda")


@dataclass(frozen=True)
class MaterialFirma:
    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    additional_certs: List[x509.Certificate] = field(default_factory=list)

    @property
    def sujeto(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def vigencia(self) -> tuple:
        return _vigencia(self.certificate)


def _vigencia(cert: x509.Certificate) -> tuple:
    try:
        return cert.not_valid_before_utc, cert.not_valid_after_utc
    except AttributeError:
        utc = pytz.UTC
        return utc.localize(cert.not_valid_before), utc.localize(cert.not_valid_after)


def extraer_material_firma(
    p12_data: Optional[bytes | memoryview],
    pin: Optional[str],
    verificar_vigencia: bool = True,
) -> MaterialFirma:
    """
    Abre el PKCS#12 con el PIN y devuelve llave privada + certificado.

    CertificateError si:
    - faltan bytes o PIN,
    - el PIN es incorrecto o el archivo está dañado,
    - falta la llave o el certificado,
    - la llave no es RSA (la firma es RSA-SHA256),
    - el certificado está fuera de vigencia.
    """
    if not p12_data:
        raise CertificateError("El emisor no tiene llave criptográfica (.p12) cargada.")
    if not pin:
        raise CertificateError("El emisor no tiene PIN de certificado configurado.")

    try:
        private_key, cert, additional_certs = pkcs12.load_key_and_certificates(
            bytes(p12_data),
            str(pin).encode("utf-8"),
        )
    except (ValueError, TypeError) as exc:
        # cryptography no distingue PIN incorrecto de archivo corrupto
        logger.warning("No se pudo abrir el PKCS12: %s", exc)
        raise CertificateError(
            "PIN incorrecto o archivo .p12 inválido."
        ) from exc

    if private_key is None:
        raise CertificateError("El archivo .p12 no contiene llave privada.")
    if cert is None:
        raise CertificateError("El archivo .p12 no contiene certificado.")
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise CertificateError(
            f"La llave del .p12 no es RSA ({type(private_key).__name__})."
        )

    if verificar_vigencia:
        cert_start, cert_end = _vigencia(cert)
        now = timezone.now()
        if now < cert_start or now > cert_end:
            logger.warning(
                "Certificado fuera de vigencia. Válido: %s hasta %s. Ahora: %s",
                cert_start,
                cert_end,
                now,
            )
            raise CertificateError(
                f"Certificado vencido. Válido desde {cert_start} hasta {cert_end}"
            )

    logger.debug("Certificado %s cargado", cert.subject.rfc4514_string())
    return MaterialFirma(
        private_key=private_key,
        certificate=cert,
        additional_certs=list(additional_certs or []),
    )


def material_de_emisor(emisor: Any) -> MaterialFirma:
    """Atajo para EmisorCredenciales (certificado_p12 + pin_certificado)."""
    return extraer_material_firma(
        getattr(emisor, "certificado_p12", None),
        getattr(emisor, "pin_certificado", None),
    )
