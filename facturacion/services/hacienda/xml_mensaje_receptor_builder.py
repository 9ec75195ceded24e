# facturacion/services/hacienda/xml_mensaje_receptor_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
XML v4.3 de MensajeReceptor: aceptación (05), aceptación parcial (06) o
rechazo (07) de un comprobante recibido de un tercero.

La clave propia del mensaje se arma con la cédula del RECEPTOR (nosotros),
mientras que el nodo <Clave> lleva la clave del comprobante externo.
"""

import logging
from datetime import datetime
from typing import Optional

from django.utils import timezone

from . import claves
from .tipos import MensajeReceptorRequest
from .xml_comprobante_builder import (
    XSD_BASE,
    ComprobanteXML,
    format_decimal,
    format_fecha_emision,
    nuevo_raiz,
    serializar,
    sub,
)

logger = logging.getLogger("facturacion.hacienda")

NOMBRE_RAIZ = "MensajeReceptor"
NAMESPACE = f"{XSD_BASE}/mensajeReceptor"


def build_mensaje_receptor_xml(
    request: MensajeReceptorRequest,
    numero: int,
    sucursal: int = 1,
    caja: int = 1,
    situacion: str = claves.SITUACION_NORMAL,
    codigo_seguridad: Optional[str] = None,
    fecha_emision: Optional[datetime] = None,
    codigo_actividad: Optional[str] = None,
) -> ComprobanteXML:
    request.validar()
    tipo_documento = request.tipo_documento
    fecha = fecha_emision or timezone.now()

    consecutivo = claves.generar_consecutivo(sucursal, caja, tipo_documento, numero)
    clave = claves.generar_clave(
        request.numero_cedula_receptor,
        consecutivo,
        situacion=situacion,
        codigo_seguridad=codigo_seguridad,
        fecha=timezone.localtime(fecha).date() if timezone.is_aware(fecha) else fecha.date(),
    )

    logger.info(
        "Construyendo MensajeReceptor tipo=%s para clave externa %s (consecutivo=%s)",
        tipo_documento,
        request.clave_externo,
        consecutivo,
    )

    root = nuevo_raiz(NOMBRE_RAIZ, NAMESPACE)
    sub(root, "Clave", request.clave_externo)
    sub(root, "NumeroCedulaEmisor", request.numero_cedula_emisor)
    sub(root, "FechaEmisionDoc", request.fecha_emision_doc)
    sub(root, "Mensaje", request.mensaje)
    if request.detalle_mensaje:
        sub(root, "DetalleMensaje", request.detalle_mensaje)
    if request.monto_total_impuesto is not None:
        sub(root, "MontoTotalImpuesto", format_decimal(request.monto_total_impuesto))
    if codigo_actividad:
        sub(root, "CodigoActividad", codigo_actividad)
    if request.condicion_impuesto:
        sub(root, "CondicionImpuesto", request.condicion_impuesto)
    sub(root, "TotalFactura", format_decimal(request.total_factura))
    sub(root, "NumeroCedulaReceptor", request.numero_cedula_receptor)
    sub(root, "NumeroConsecutivoReceptor", consecutivo)

    return ComprobanteXML(
        xml=serializar(root),
        clave=clave,
        consecutivo=consecutivo,
        fecha_emision=format_fecha_emision(fecha),
        tipo_documento=tipo_documento,
    )
