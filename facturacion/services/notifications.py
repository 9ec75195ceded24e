# facturacion/services/notifications.py
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils.html import escape, strip_tags

logger = logging.getLogger("facturacion.notifications")

ASUNTO_ACEPTADO = "Factura Electrónica {clave}"
ASUNTO_RECHAZADO = "Comprobante Rechazado por Hacienda {clave}"


def _decodificar_xml(contenido: Optional[str]) -> Optional[bytes]:
    """Los XML se guardan en base64; si no lo son se adjuntan tal cual."""
    if not contenido:
        return None
    try:
        return base64.b64decode(contenido, validate=True)
    except (binascii.Error, ValueError):
        return contenido.encode("utf-8")


def enviar_comprobante_receptor(
    destinatario: str,
    asunto: str,
    cuerpo_html: str,
    clave: str,
    pdf: Optional[bytes] = None,
    xml_firmado: Optional[str] = None,
    xml_respuesta: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Envía al receptor el PDF, el XML firmado y la respuesta de Hacienda.

    Nunca lanza: devuelve {"ok": bool, "to", "subject", "error"?}.
    """
    destinatario = (destinatario or "").strip()
    if not destinatario:
        return {"ok": False, "error": "Sin correo de receptor."}

    from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None) or "no-reply@example.com"

    message = EmailMultiAlternatives(
        subject=asunto,
        body=strip_tags(cuerpo_html),
        from_email=from_email,
        to=[destinatario],
    )
    message.attach_alternative(cuerpo_html, "text/html")

    if pdf:
        message.attach(f"{clave}.pdf", pdf, "application/pdf")

    firmado = _decodificar_xml(xml_firmado)
    if firmado:
        message.attach(f"{clave}.xml", firmado, "application/xml")

    respuesta = _decodificar_xml(xml_respuesta)
    if respuesta:
        message.attach(f"{clave}_respuesta.xml", respuesta, "application/xml")

    try:
        message.send(fail_silently=False)
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Error enviando comprobante %s a %s: %s",
            clave,
            destinatario,
            exc,
        )
        return {"ok": False, "to": destinatario, "subject": asunto, "error": str(exc)}

    logger.info("Comprobante %s enviado a %s", clave, destinatario)
    return {"ok": True, "to": destinatario, "subject": asunto}


def construir_notificacion(clave: str, aceptado: bool, emisor_nombre: str = "") -> Dict[str, str]:
    """Asunto y cuerpo HTML según la resolución de Hacienda."""
    if aceptado:
        asunto = ASUNTO_ACEPTADO.format(clave=clave)
        cuerpo = (
            "<p>Estimado(a),</p>"
            f"<p>Adjuntamos el comprobante electrónico <b>{clave}</b>"
            f"{' emitido por ' + escape(emisor_nombre) if emisor_nombre else ''}, "
            "aceptado por el Ministerio de Hacienda.</p>"
        )
    else:
        asunto = ASUNTO_RECHAZADO.format(clave=clave)
        cuerpo = (
            "<p>Estimado(a),</p>"
            f"<p>El comprobante <b>{clave}</b> fue rechazado por el Ministerio de Hacienda. "
            "Adjuntamos la respuesta con el detalle.</p>"
        )
    return {"asunto": asunto, "cuerpo": cuerpo}
