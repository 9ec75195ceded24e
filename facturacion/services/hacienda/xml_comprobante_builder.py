# facturacion/services/hacienda/xml_comprobante_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Construcción del XML v4.3 para Factura, Nota de Débito, Nota de Crédito y
Tiquete electrónicos.

El formato de decimales es fijo por tipo de campo: la firma digiere estos
bytes exactos, cualquier variación invalida el comprobante.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.utils import timezone
from lxml import etree

from . import claves
from .exceptions import ValidationError
from .tipos import (
    TIPO_FACTURA,
    TIPO_NOTA_CREDITO,
    TIPO_NOTA_DEBITO,
    TIPO_TIQUETE,
    CreacionComprobanteRequest,
    LineaDetalle,
    Receptor,
    ResumenFactura,
)

logger = logging.getLogger("facturacion.hacienda")

XSD_BASE = "https://cdn.comprobanteselectronicos.go.cr/xml-schemas/v4.3"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
XSD_NS = "http://www.w3.org/2001/XMLSchema"

# tipo_documento -> (nombre del nodo raíz, namespace)
ESQUEMAS: Dict[str, Tuple[str, str]] = {
    TIPO_FACTURA: ("FacturaElectronica", f"{XSD_BASE}/facturaElectronica"),
    TIPO_NOTA_DEBITO: ("NotaDebitoElectronica", f"{XSD_BASE}/notaDebitoElectronica"),
    TIPO_NOTA_CREDITO: ("NotaCreditoElectronica", f"{XSD_BASE}/notaCreditoElectronica"),
    TIPO_TIQUETE: ("TiqueteElectronico", f"{XSD_BASE}/tiqueteElectronico"),
}

# Decimales por clase de campo
DECIMALES_MONTO = 5
DECIMALES_TARIFA = 2
DECIMALES_CANTIDAD = 3

# (atributo en ResumenFactura, nodo XML) en orden del XSD
RESUMEN_NODOS = (
    ("total_serv_gravados", "TotalServGravados"),
    ("total_serv_exentos", "TotalServExentos"),
    ("total_serv_exonerado", "TotalServExonerado"),
    ("total_mercancias_gravadas", "TotalMercanciasGravadas"),
    ("total_mercancias_exentas", "TotalMercanciasExentas"),
    ("total_mercancias_exonerada", "TotalMercExonerada"),
    ("total_gravado", "TotalGravado"),
    ("total_exento", "TotalExento"),
    ("total_exonerado", "TotalExonerado"),
    ("total_venta", "TotalVenta"),
    ("total_descuentos", "TotalDescuentos"),
    ("total_venta_neta", "TotalVentaNeta"),
    ("total_impuesto", "TotalImpuesto"),
    ("total_comprobante", "TotalComprobante"),
)


@dataclass
class ComprobanteXML:
    xml: str
    clave: str
    consecutivo: str
    fecha_emision: str
    tipo_documento: str


def format_decimal(value: Decimal | float | int | None, decimales: int = DECIMALES_MONTO) -> str:
    """
    Formatea con un número fijo de decimales (ROUND_HALF_UP).

    Maneja None como 0.
    """
    if value is None:
        value = Decimal("0")
    try:
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if not value.is_finite():
            raise InvalidOperation(value)
        exponente = Decimal(1).scaleb(-decimales)
        redondeado = value.quantize(exponente, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Monto fuera de formato: {value!r}") from exc
    return f"{redondeado:.{decimales}f}"


def format_fecha_emision(fecha: datetime) -> str:
    """ISO-8601 con offset local, p.ej. 2024-05-10T14:22:01-06:00."""
    if timezone.is_naive(fecha):
        fecha = timezone.make_aware(fecha)
    return timezone.localtime(fecha).replace(microsecond=0).isoformat()


def sub(parent: etree._Element, tag: str, text: Optional[str] = None, **attrib: Any) -> etree._Element:
    """SubElement en el mismo namespace del padre."""
    ns = etree.QName(parent).namespace
    qname = f"{{{ns}}}{tag}" if ns else tag
    elem = etree.SubElement(parent, qname, **attrib)
    if text is not None:
        elem.text = str(text)
    return elem


def nuevo_raiz(nombre: str, namespace: str) -> etree._Element:
    return etree.Element(
        f"{{{namespace}}}{nombre}",
        nsmap={None: namespace, "xsi": XSI_NS, "xsd": XSD_NS},
    )


def serializar(root: etree._Element) -> str:
    xml_bytes = etree.tostring(
        root,
        encoding="UTF-8",
        xml_declaration=True,
        pretty_print=False,
    )
    return xml_bytes.decode("utf-8")


def _build_emisor(root: etree._Element, emisor: Any) -> None:
    identificacion = str(emisor.identificacion).strip()

    nodo = sub(root, "Emisor")
    sub(nodo, "Nombre", emisor.nombre)
    ident = sub(nodo, "Identificacion")
    sub(ident, "Tipo", claves.tipo_identificacion(identificacion))
    sub(ident, "Numero", identificacion)

    nombre_comercial = getattr(emisor, "nombre_comercial", None)
    if nombre_comercial:
        sub(nodo, "NombreComercial", nombre_comercial)

    correo = getattr(emisor, "correo_electronico", None)
    if correo:
        sub(nodo, "CorreoElectronico", correo)


def _build_receptor(root: etree._Element, receptor: Receptor) -> None:
    nodo = sub(root, "Receptor")
    sub(nodo, "Nombre", receptor.nombre)
    ident = sub(nodo, "Identificacion")
    sub(ident, "Tipo", receptor.tipo_identificacion)
    sub(ident, "Numero", receptor.identificacion)

    if receptor.ubicacion is not None:
        ubicacion = receptor.ubicacion
        ubi = sub(nodo, "Ubicacion")
        sub(ubi, "Provincia", ubicacion.provincia)
        sub(ubi, "Canton", ubicacion.canton)
        sub(ubi, "Distrito", ubicacion.distrito)
        if ubicacion.barrio:
            sub(ubi, "Barrio", ubicacion.barrio)
        sub(ubi, "OtrasSenas", ubicacion.otras_senas)

    if receptor.correo_electronico:
        sub(nodo, "CorreoElectronico", receptor.correo_electronico)


def _build_linea(detalle: etree._Element, linea: LineaDetalle, numero: int) -> None:
    nodo = sub(detalle, "LineaDetalle")
    sub(nodo, "NumeroLinea", numero)
    sub(nodo, "Codigo", linea.codigo)
    sub(nodo, "Cantidad", format_decimal(linea.cantidad, DECIMALES_CANTIDAD))
    sub(nodo, "UnidadMedida", linea.unidad_medida)
    sub(nodo, "Detalle", linea.detalle)
    sub(nodo, "PrecioUnitario", format_decimal(linea.precio_unitario))
    # monto_total = cantidad * precio_unitario, lo calcula el POS
    sub(nodo, "MontoTotal", format_decimal(linea.monto_total))

    if linea.descuento is not None:
        desc = sub(nodo, "Descuento")
        sub(desc, "MontoDescuento", format_decimal(linea.descuento.monto))
        sub(desc, "NaturalezaDescuento", linea.descuento.naturaleza)

    sub(nodo, "SubTotal", format_decimal(linea.sub_total))

    for impuesto in linea.impuestos:
        imp = sub(nodo, "Impuesto")
        sub(imp, "Codigo", impuesto.codigo)
        sub(imp, "CodigoTarifa", impuesto.codigo_tarifa)
        sub(imp, "Tarifa", format_decimal(impuesto.tarifa, DECIMALES_TARIFA))
        sub(imp, "Monto", format_decimal(impuesto.monto))

    impuesto_neto = linea.impuesto_neto_calculado
    if impuesto_neto is not None:
        sub(nodo, "ImpuestoNeto", format_decimal(impuesto_neto))

    sub(nodo, "MontoTotalLinea", format_decimal(linea.monto_total_linea))


def _build_resumen(root: etree._Element, resumen: ResumenFactura) -> None:
    nodo = sub(root, "ResumenFactura")
    moneda = sub(nodo, "CodigoTipoMoneda")
    sub(moneda, "CodigoMoneda", resumen.codigo_moneda)
    sub(moneda, "TipoCambio", format_decimal(resumen.tipo_cambio))

    for atributo, tag in RESUMEN_NODOS:
        sub(nodo, tag, format_decimal(getattr(resumen, atributo)))


def build_comprobante_xml(
    request: CreacionComprobanteRequest,
    emisor: Any,
    numero: int,
    tipo_documento: str = TIPO_FACTURA,
    situacion: str = claves.SITUACION_NORMAL,
    codigo_seguridad: Optional[str] = None,
    fecha_emision: Optional[datetime] = None,
) -> ComprobanteXML:
    """
    Construye el XML del comprobante y retorna también la clave/consecutivo usados.

    `emisor` puede ser EmisorCredenciales o cualquier objeto con
    identificacion / nombre / codigo_actividad.
    """
    if tipo_documento not in ESQUEMAS:
        raise ValidationError(f"Tipo de comprobante sin esquema XML: {tipo_documento!r}")

    nombre_raiz, namespace = ESQUEMAS[tipo_documento]
    fecha = fecha_emision or timezone.now()

    consecutivo = claves.generar_consecutivo(
        request.sucursal, request.caja, tipo_documento, numero
    )
    clave = claves.generar_clave(
        emisor.identificacion,
        consecutivo,
        situacion=situacion,
        codigo_seguridad=codigo_seguridad,
        fecha=timezone.localtime(fecha).date() if timezone.is_aware(fecha) else fecha.date(),
    )
    fecha_texto = format_fecha_emision(fecha)
    codigo_actividad = (
        getattr(emisor, "codigo_actividad", None)
        or getattr(settings, "HACIENDA_CODIGO_ACTIVIDAD", "")
    )

    logger.info(
        "Construyendo XML %s consecutivo=%s clave=%s",
        nombre_raiz,
        consecutivo,
        clave,
    )

    root = nuevo_raiz(nombre_raiz, namespace)
    sub(root, "Clave", clave)
    sub(root, "CodigoActividad", codigo_actividad)
    sub(root, "NumeroConsecutivo", consecutivo)
    sub(root, "FechaEmision", fecha_texto)

    _build_emisor(root, emisor)
    if request.receptor is not None:
        _build_receptor(root, request.receptor)

    sub(root, "CondicionVenta", request.condicion_venta)
    if request.plazo_credito:
        sub(root, "PlazoCredito", request.plazo_credito)
    for medio in request.medio_pago:
        sub(root, "MedioPago", medio)

    detalle = sub(root, "DetalleServicio")
    # Numeración desde 1, se ignora numero_linea de entrada
    for numero_linea, linea in enumerate(request.lineas_detalle, start=1):
        _build_linea(detalle, linea, numero_linea)

    _build_resumen(root, request.resumen_factura)

    for referencia in request.referencias:
        ref = sub(root, "InformacionReferencia")
        sub(ref, "TipoDoc", referencia.tipo_documento)
        sub(ref, "Numero", referencia.numero)
        sub(ref, "FechaEmision", referencia.fecha_emision)
        sub(ref, "Codigo", referencia.codigo)
        sub(ref, "Razon", referencia.razon)

    return ComprobanteXML(
        xml=serializar(root),
        clave=clave,
        consecutivo=consecutivo,
        fecha_emision=fecha_texto,
        tipo_documento=tipo_documento,
    )
