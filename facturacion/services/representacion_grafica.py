# facturacion/services/representacion_grafica.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Representación gráfica (PDF) de los comprobantes, generada con ReportLab.

Es best-effort: el orquestador captura RepresentacionError (y cualquier
otra excepción) y continúa con la firma y el envío.

El PDF se guarda en default_storage como {HACIENDA_PDF_SUBDIR}/{clave}.pdf.
"""

import logging
from decimal import Decimal
from io import BytesIO
from typing import Any, List, Optional

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from facturacion.services.hacienda.tipos import CreacionComprobanteRequest

logger = logging.getLogger("facturacion.ride")

TITULOS = {
    "01": "FACTURA ELECTRÓNICA",
    "02": "NOTA DE DÉBITO ELECTRÓNICA",
    "03": "NOTA DE CRÉDITO ELECTRÓNICA",
    "04": "TIQUETE ELECTRÓNICO",
}


class RepresentacionError(Exception):
    """Error controlado al generar o guardar el PDF de un comprobante."""


def _fmt_amount(value: Any) -> str:
    """Formatea montos con 2 decimales y separador de miles."""
    if value is None:
        return "0.00"
    try:
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return f"{value:,.2f}"
    except Exception:
        return str(value)


def _build_qr_drawing(contenido: Optional[str]) -> Optional[Drawing]:
    """QR con la clave numérica."""
    if not contenido:
        return None
    try:
        qr = QrCodeWidget(contenido)
        bounds = qr.getBounds()
        size = 30 * mm
        width = bounds[2] - bounds[0]
        height = bounds[3] - bounds[1]
        drawing = Drawing(
            size,
            size,
            transform=[size / width, 0, 0, size / height, 0, 0],
        )
        drawing.add(qr)
        return drawing
    except Exception:
        logger.exception("Error generando QR para el PDF")
        return None


def generar_pdf_comprobante(
    request: CreacionComprobanteRequest,
    emisor: Any,
    clave: str,
    consecutivo: str,
    tipo_documento: str = "01",
    fecha_emision: str = "",
) -> bytes:
    """Construye el PDF y retorna los bytes."""
    try:
        return _build_pdf(request, emisor, clave, consecutivo, tipo_documento, fecha_emision)
    except RepresentacionError:
        raise
    except Exception as exc:
        raise RepresentacionError(f"No se pudo generar el PDF de {clave}: {exc}") from exc


def _build_pdf(
    request: CreacionComprobanteRequest,
    emisor: Any,
    clave: str,
    consecutivo: str,
    tipo_documento: str,
    fecha_emision: str,
) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=15 * mm,
        leftMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=f"{TITULOS.get(tipo_documento, 'COMPROBANTE')} {consecutivo}",
    )

    styles = getSampleStyleSheet()
    normal = styles["Normal"]
    title_style = ParagraphStyle(
        "PdfTitle",
        parent=normal,
        fontSize=14,
        leading=16,
        alignment=TA_CENTER,
        fontName="Helvetica-Bold",
    )
    value_style = ParagraphStyle("Value", parent=normal, fontSize=8, leading=10)

    elements: List[Any] = []

    emisor_html = (
        f"<b>{emisor.nombre}</b><br/>"
        f"<b>Cédula:</b> {emisor.identificacion}<br/>"
    )
    if getattr(emisor, "correo_electronico", ""):
        emisor_html += f"<b>Correo:</b> {emisor.correo_electronico}<br/>"

    documento_html = (
        f"<b>{TITULOS.get(tipo_documento, 'COMPROBANTE ELECTRÓNICO')}</b><br/>"
        f"<b>Consecutivo:</b> {consecutivo}<br/>"
        f"<b>Fecha:</b> {fecha_emision}<br/>"
        f"<b>Clave:</b> {clave}"
    )

    encabezado = Table(
        [[Paragraph(emisor_html, value_style), Paragraph(documento_html, value_style)]],
        colWidths=[85 * mm, 100 * mm],
    )
    encabezado.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("BOX", (1, 0), (1, 0), 0.5, colors.grey),
            ]
        )
    )
    elements.append(Paragraph(TITULOS.get(tipo_documento, "COMPROBANTE"), title_style))
    elements.append(Spacer(1, 4 * mm))
    elements.append(encabezado)
    elements.append(Spacer(1, 4 * mm))

    receptor = request.receptor
    if receptor is not None:
        receptor_html = (
            f"<b>Receptor:</b> {receptor.nombre}<br/>"
            f"<b>Identificación:</b> {receptor.identificacion}"
        )
        if receptor.correo_electronico:
            receptor_html += f"<br/><b>Correo:</b> {receptor.correo_electronico}"
        elements.append(Paragraph(receptor_html, value_style))
        elements.append(Spacer(1, 4 * mm))

    filas: List[List[Any]] = [["#", "Código", "Detalle", "Cant.", "Precio", "Total"]]
    for numero, linea in enumerate(request.lineas_detalle, start=1):
        filas.append(
            [
                str(numero),
                linea.codigo,
                Paragraph(linea.detalle, value_style),
                f"{linea.cantidad:.3f}",
                _fmt_amount(linea.precio_unitario),
                _fmt_amount(linea.monto_total_linea),
            ]
        )

    detalle = Table(
        filas,
        colWidths=[8 * mm, 28 * mm, 77 * mm, 18 * mm, 27 * mm, 27 * mm],
        repeatRows=1,
    )
    detalle.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#EEEEEE")),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("ALIGN", (3, 1), (-1, -1), "RIGHT"),
            ]
        )
    )
    elements.append(detalle)
    elements.append(Spacer(1, 4 * mm))

    resumen = request.resumen_factura
    totales = Table(
        [
            ["Moneda", resumen.codigo_moneda],
            ["Total venta", _fmt_amount(resumen.total_venta)],
            ["Descuentos", _fmt_amount(resumen.total_descuentos)],
            ["Venta neta", _fmt_amount(resumen.total_venta_neta)],
            ["Impuestos", _fmt_amount(resumen.total_impuesto)],
            ["TOTAL", _fmt_amount(resumen.total_comprobante)],
        ],
        colWidths=[35 * mm, 35 * mm],
        hAlign="RIGHT",
    )
    totales.setStyle(
        TableStyle(
            [
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("LINEABOVE", (0, -1), (-1, -1), 0.5, colors.black),
            ]
        )
    )

    qr = _build_qr_drawing(clave)
    elements.append(Table([[qr or "", totales]], colWidths=[60 * mm, 125 * mm]))

    doc.build(elements)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    return pdf_bytes


class AlmacenPdf:
    """Guarda/lee PDFs por clave en default_storage."""

    def __init__(self, subdir: Optional[str] = None) -> None:
        self.subdir = (subdir or getattr(settings, "HACIENDA_PDF_SUBDIR", "pdfs")).strip("/")

    def ruta(self, clave: str) -> str:
        return f"{self.subdir}/{clave}.pdf"

    def guardar(self, clave: str, contenido: bytes) -> str:
        ruta = self.ruta(clave)
        try:
            if default_storage.exists(ruta):
                default_storage.delete(ruta)
            nombre = default_storage.save(ruta, ContentFile(contenido))
            return default_storage.url(nombre)
        except Exception as exc:
            raise RepresentacionError(f"No se pudo guardar el PDF {ruta}: {exc}") from exc

    def leer(self, clave: str) -> Optional[bytes]:
        ruta = self.ruta(clave)
        if not default_storage.exists(ruta):
            return None
        with default_storage.open(ruta, "rb") as fh:
            return fh.read()
