# facturacion/services/hacienda/workflow.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Orquestación de la emisión ante Hacienda CR:

    consecutivo -> XML -> persistencia (CREADO) -> PDF (best-effort)
    -> llave criptográfica -> FIRMANDO -> firma -> XML firmado persistido
    -> token IDP -> recepción (202) -> ENVIADO (+1 intento)

Si algo falla después de CREADO el documento queda en el último estado
alcanzado, el fallo se registra en LogTransaccion y la excepción se re-lanza.
La resolución final (ACEPTADO/RECHAZADO) la hace el poller.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional, Union

from django.conf import settings

from facturacion.models import DocumentoElectronico
from facturacion.services.representacion_grafica import (
    AlmacenPdf,
    generar_pdf_comprobante,
)

from . import claves
from .auth import HaciendaTokenCache
from .certificado import material_de_emisor
from .client import HaciendaClient
from .exceptions import ValidationError
from .repository import ComprobanteRepository, DjangoComprobanteRepository
from .signer import firmar_xml
from .tipos import (
    TIPO_FACTURA,
    CreacionComprobanteRequest,
    MensajeReceptorRequest,
)
from .xml_comprobante_builder import ComprobanteXML, build_comprobante_xml
from .xml_mensaje_receptor_builder import build_mensaje_receptor_xml

logger = logging.getLogger("facturacion.hacienda")

Estado = DocumentoElectronico.Estado

MODO_CODIGO_ALEATORIO = "aleatorio"
MODO_CODIGO_CONSECUTIVO = "consecutivo"


def codigo_seguridad_para(numero: int, modo: Optional[str] = None) -> Optional[str]:
    """
    Código de seguridad según HACIENDA_CODIGO_SEGURIDAD_MODO:
    - aleatorio: None (claves.generar_clave genera 8 dígitos aleatorios)
    - consecutivo: número del consecutivo con ceros a la izquierda (trazable)
    """
    modo = (modo or getattr(settings, "HACIENDA_CODIGO_SEGURIDAD_MODO", MODO_CODIGO_ALEATORIO)).lower()
    if modo == MODO_CODIGO_CONSECUTIVO:
        return str(numero % 100000000).zfill(8)
    if modo == MODO_CODIGO_ALEATORIO:
        return None
    raise ValidationError(f"HACIENDA_CODIGO_SEGURIDAD_MODO desconocido: {modo!r}")


def _json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


class FacturacionService:
    """
    Orquestador de emisión. Recibe sus colaboradores por constructor; la
    caché de tokens es la instancia única del proceso (ver apps.py).
    """

    def __init__(
        self,
        repository: Optional[ComprobanteRepository] = None,
        token_cache: Optional[HaciendaTokenCache] = None,
        client: Optional[HaciendaClient] = None,
        pdf_renderer=generar_pdf_comprobante,
        pdf_storage: Optional[AlmacenPdf] = None,
    ) -> None:
        self.repository = repository or DjangoComprobanteRepository()
        self.token_cache = token_cache or HaciendaTokenCache()
        self.client = client or HaciendaClient()
        self.pdf_renderer = pdf_renderer
        self.pdf_storage = pdf_storage or AlmacenPdf()

    # ------------------------------------------------------------------
    # Comprobantes (FE / ND / NC / TE)
    # ------------------------------------------------------------------

    def emitir_comprobante(
        self,
        emisor_id: int,
        request: Union[CreacionComprobanteRequest, Mapping[str, Any]],
        tipo_documento: str = TIPO_FACTURA,
        situacion: str = claves.SITUACION_NORMAL,
        codigo_seguridad: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not isinstance(request, CreacionComprobanteRequest):
            request = CreacionComprobanteRequest.from_dict(request)
        request.validar(tipo_documento)

        emisor = self._emisor_activo(emisor_id)

        numero = self.repository.increment_sequence(emisor.pk)
        comprobante = build_comprobante_xml(
            request,
            emisor,
            numero,
            tipo_documento=tipo_documento,
            situacion=situacion,
            codigo_seguridad=codigo_seguridad or codigo_seguridad_para(numero),
        )

        documento_id = self.repository.create_document(
            emisor_id=emisor.pk,
            clave=comprobante.clave,
            consecutivo=comprobante.consecutivo,
            tipo_documento=tipo_documento,
            monto_total=request.resumen_factura.total_comprobante,
            xml_generado=comprobante.xml,
            correo_receptor=request.correo_receptor,
            logs=[("Generación inicial del XML 4.3", None)],
        )
        logger.info(
            "Documento %s creado (tipo=%s, clave=%s)",
            documento_id,
            tipo_documento,
            comprobante.clave,
        )

        self._generar_pdf(documento_id, request, emisor, comprobante)

        receptor = None
        if request.receptor is not None:
            receptor = {
                "tipoIdentificacion": request.receptor.tipo_identificacion,
                "numeroIdentificacion": request.receptor.identificacion,
            }

        payload = {
            "clave": comprobante.clave,
            "fecha": comprobante.fecha_emision,
            "emisor": {
                "tipoIdentificacion": claves.tipo_identificacion(emisor.identificacion),
                "numeroIdentificacion": emisor.identificacion,
            },
        }
        if receptor is not None:
            payload["receptor"] = receptor

        return self._firmar_y_enviar(documento_id, emisor, comprobante, payload)

    # ------------------------------------------------------------------
    # Mensaje receptor (05 / 06 / 07)
    # ------------------------------------------------------------------

    def emitir_mensaje_receptor(
        self,
        emisor_id: int,
        request: Union[MensajeReceptorRequest, Mapping[str, Any]],
        sucursal: int = 1,
        caja: int = 1,
        situacion: str = claves.SITUACION_NORMAL,
    ) -> Dict[str, Any]:
        if not isinstance(request, MensajeReceptorRequest):
            request = MensajeReceptorRequest.from_dict(request)
        request.validar()

        emisor = self._emisor_activo(emisor_id)
        if request.numero_cedula_receptor != emisor.identificacion:
            raise ValidationError(
                "numero_cedula_receptor no coincide con la identificación del emisor "
                f"({request.numero_cedula_receptor} != {emisor.identificacion})."
            )

        numero = self.repository.increment_sequence(emisor.pk)
        mensaje = build_mensaje_receptor_xml(
            request,
            numero,
            sucursal=sucursal,
            caja=caja,
            situacion=situacion,
            codigo_seguridad=codigo_seguridad_para(numero),
            codigo_actividad=emisor.codigo_actividad or None,
        )

        documento_id = self.repository.create_document(
            emisor_id=emisor.pk,
            clave=mensaje.clave,
            consecutivo=mensaje.consecutivo,
            tipo_documento=mensaje.tipo_documento,
            monto_total=request.total_factura,
            xml_generado=mensaje.xml,
            clave_referencia=request.clave_externo,
            logs=[(f"Generación de MensajeReceptor {mensaje.tipo_documento}", None)],
        )

        payload = {
            "clave": request.clave_externo,
            "fecha": mensaje.fecha_emision,
            "emisor": {
                "tipoIdentificacion": claves.tipo_identificacion(request.numero_cedula_emisor),
                "numeroIdentificacion": request.numero_cedula_emisor,
            },
            "receptor": {
                "tipoIdentificacion": claves.tipo_identificacion(emisor.identificacion),
                "numeroIdentificacion": emisor.identificacion,
            },
            "consecutivoReceptor": mensaje.consecutivo,
        }
        return self._firmar_y_enviar(documento_id, emisor, mensaje, payload)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emisor_activo(self, emisor_id: int) -> Any:
        emisor = self.repository.find_issuer(emisor_id)
        if not getattr(emisor, "is_active", True):
            raise ValidationError(f"El emisor {emisor.identificacion} está inactivo.")
        return emisor

    def _generar_pdf(
        self,
        documento_id: int,
        request: CreacionComprobanteRequest,
        emisor: Any,
        comprobante: ComprobanteXML,
    ) -> None:
        """Best-effort: un fallo aquí nunca detiene la emisión."""
        try:
            contenido = self.pdf_renderer(
                request,
                emisor,
                comprobante.clave,
                comprobante.consecutivo,
                comprobante.tipo_documento,
                comprobante.fecha_emision,
            )
            url = self.pdf_storage.guardar(comprobante.clave, contenido)
            self.repository.update_document_state(documento_id, campos={"pdf_url": url})
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "No se pudo generar el PDF del documento %s (%s): %s",
                documento_id,
                comprobante.clave,
                exc,
            )

    def _firmar_y_enviar(
        self,
        documento_id: int,
        emisor: Any,
        comprobante: ComprobanteXML,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            # La llave se abre antes de FIRMANDO: un PIN malo deja el documento en CREADO
            material = material_de_emisor(emisor)

            self.repository.update_document_state(documento_id, estado=Estado.FIRMANDO)
            xml_firmado = firmar_xml(comprobante.xml, material)
            self.repository.update_document_state(
                documento_id,
                xml={"xml_firmado": xml_firmado},
                log=("XML firmado (XAdES-EPES)", None),
            )

            token = self.token_cache.obtener_token(emisor.usuario_atv, emisor.password_atv)

            payload = dict(payload, comprobanteXml=xml_firmado)
            respuesta = self.client.enviar_comprobante(payload, token)

            self.repository.update_document_state(
                documento_id,
                estado=Estado.ENVIADO,
                incrementar_intentos=True,
                log=(
                    f"Envío exitoso a Hacienda (Status {respuesta.status_code})",
                    _json({"location": respuesta.headers.get("Location")}),
                ),
            )
        except Exception as exc:
            self._registrar_fallo(documento_id, exc)
            raise

        logger.info(
            "Documento %s enviado a Hacienda (clave=%s)",
            documento_id,
            comprobante.clave,
        )
        return {
            "ok": True,
            "status": 202,
            "mensaje": "Comprobante recibido por Hacienda, pendiente de resolución.",
            "documento_id": documento_id,
            "clave": comprobante.clave,
            "consecutivo": comprobante.consecutivo,
            "estado": Estado.ENVIADO.value,
        }

    def _registrar_fallo(self, documento_id: int, exc: Exception) -> None:
        detalle: Dict[str, Any] = {
            "error": exc.__class__.__name__,
            "mensaje": str(exc),
        }
        for attr in ("paso", "status_code", "respuesta"):
            valor = getattr(exc, attr, None)
            if valor is not None:
                detalle[attr] = valor

        logger.error(
            "Fallo al firmar o enviar documento %s: %s",
            documento_id,
            exc,
        )
        try:
            self.repository.append_log(documento_id, "Fallo al firmar o enviar", _json(detalle))
        except Exception:  # noqa: BLE001
            logger.exception("No se pudo registrar el fallo del documento %s", documento_id)
