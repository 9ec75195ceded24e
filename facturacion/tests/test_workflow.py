# facturacion/tests/test_workflow.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import json
from unittest.mock import MagicMock

from django.test import TestCase
from django.utils import timezone

from facturacion.models import DocumentoElectronico, EmisorCredenciales
from facturacion.services.hacienda import claves
from facturacion.services.hacienda.client import EnvioResponse
from facturacion.services.hacienda.exceptions import (
    AuthError,
    CertificateError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from facturacion.services.hacienda.workflow import FacturacionService, codigo_seguridad_para

from .utils import PIN, p12_valido, solicitud_factura, verificar_firma

Estado = DocumentoElectronico.Estado


class FacturacionServiceTests(TestCase):
    """
    Emisión completa con token y recepción simulados:

    - camino feliz hasta ENVIADO,
    - fallos de llave, token y recepción dejan el documento donde quedó,
    - el PDF es best-effort.
    """

    def setUp(self) -> None:
        self.emisor = self._crear_emisor()

        self.token_cache = MagicMock()
        self.token_cache.obtener_token.return_value = "tok"
        self.client = MagicMock()
        self.client.enviar_comprobante.return_value = EnvioResponse(
            status_code=202,
            headers={"Location": "https://api.test/recepcion/x"},
        )
        self.service = FacturacionService(token_cache=self.token_cache, client=self.client)

    # ===================================================================
    # Helpers
    # ===================================================================

    def _crear_emisor(self, **overrides) -> EmisorCredenciales:
        data = {
            "identificacion": "3101123456",
            "nombre": "EMPRESA PRUEBA SA",
            "correo_electronico": "facturas@prueba.cr",
            "codigo_actividad": "721001",
            "usuario_atv": "cpj-3-101-123456@stag.comprobanteselectronicos.go.cr",
            "password_atv": "secreto",
            "certificado_p12": p12_valido(),
            "pin_certificado": PIN,
        }
        data.update(overrides)
        return EmisorCredenciales.objects.create(**data)

    def _acciones(self, documento_id: int) -> list:
        documento = DocumentoElectronico.objects.get(pk=documento_id)
        return list(documento.logs.values_list("accion", flat=True))

    # ===================================================================
    # Comprobantes
    # ===================================================================

    def test_emision_exitosa(self) -> None:
        resultado = self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())

        self.assertTrue(resultado["ok"])
        self.assertEqual(resultado["status"], 202)
        self.assertEqual(resultado["estado"], "ENVIADO")
        self.assertEqual(resultado["consecutivo"], "00100001010000000001")
        self.assertEqual(len(resultado["clave"]), 50)
        clave = resultado["clave"]
        self.assertEqual(clave[:3], "506")
        self.assertEqual(clave[3:9], timezone.localdate().strftime("%d%m%y"))
        self.assertEqual(clave[9:21], "003101123456")
        self.assertEqual(clave[21:41], "00100001010000000001")
        self.assertEqual(clave[41], "1")

        documento = DocumentoElectronico.objects.get(pk=resultado["documento_id"])
        self.assertEqual(documento.estado_interno, Estado.ENVIADO)
        self.assertEqual(documento.intentos_envio, 1)
        self.assertEqual(documento.correo_receptor, "cliente@example.com")
        self.assertTrue(documento.pdf_url.endswith(f"{documento.clave_numerica}.pdf"))
        self.assertEqual(
            self._acciones(documento.pk),
            [
                "Generación inicial del XML 4.3",
                "XML firmado (XAdES-EPES)",
                "Envío exitoso a Hacienda (Status 202)",
            ],
        )
        verificar_firma(base64.b64decode(documento.xml_almacen.xml_firmado))

        self.token_cache.obtener_token.assert_called_once_with(
            self.emisor.usuario_atv, self.emisor.password_atv
        )
        payload, token = self.client.enviar_comprobante.call_args[0]
        self.assertEqual(token, "tok")
        self.assertEqual(payload["clave"], documento.clave_numerica)
        self.assertEqual(payload["emisor"], {"tipoIdentificacion": "02", "numeroIdentificacion": "3101123456"})
        self.assertEqual(payload["receptor"]["numeroIdentificacion"], "114480790")
        self.assertEqual(payload["comprobanteXml"], documento.xml_almacen.xml_firmado)

    def test_consecutivos_sucesivos(self) -> None:
        primero = self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())
        segundo = self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())

        self.assertEqual(primero["consecutivo"][-10:], "0000000001")
        self.assertEqual(segundo["consecutivo"][-10:], "0000000002")
        self.assertNotEqual(primero["clave"], segundo["clave"])
        self.emisor.refresh_from_db()
        self.assertEqual(self.emisor.consecutivo, 2)

    def test_pin_incorrecto_queda_en_creado(self) -> None:
        self.emisor.pin_certificado = "0000"
        self.emisor.save()

        with self.assertRaises(CertificateError):
            self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())

        documento = DocumentoElectronico.objects.get()
        self.assertEqual(documento.estado_interno, Estado.CREADO)
        self.assertEqual(documento.intentos_envio, 0)
        self.assertEqual(self._acciones(documento.pk)[-1], "Fallo al firmar o enviar")
        self.client.enviar_comprobante.assert_not_called()

    def test_recepcion_rechaza_queda_en_firmando(self) -> None:
        self.client.enviar_comprobante.side_effect = TransportError(
            "Recepción de Hacienda respondió HTTP 400.",
            status_code=400,
            respuesta="El comprobante ya fue recibido",
            retryable=False,
        )

        with self.assertRaises(TransportError):
            self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())

        documento = DocumentoElectronico.objects.get()
        self.assertEqual(documento.estado_interno, Estado.FIRMANDO)
        self.assertEqual(documento.intentos_envio, 0)
        self.assertTrue(documento.xml_almacen.xml_firmado)

        fallo = documento.logs.last()
        self.assertEqual(fallo.accion, "Fallo al firmar o enviar")
        detalle = json.loads(fallo.resultado_json)
        self.assertEqual(detalle["error"], "TransportError")
        self.assertEqual(detalle["status_code"], 400)
        self.assertEqual(detalle["respuesta"], "El comprobante ya fue recibido")

    def test_idp_caido_queda_en_firmando(self) -> None:
        self.token_cache.obtener_token.side_effect = AuthError("IDP inalcanzable")

        with self.assertRaises(AuthError):
            self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())

        documento = DocumentoElectronico.objects.get()
        self.assertEqual(documento.estado_interno, Estado.FIRMANDO)
        self.client.enviar_comprobante.assert_not_called()

    def test_fallo_del_pdf_no_detiene_la_emision(self) -> None:
        renderer = MagicMock(side_effect=RuntimeError("sin fuentes"))
        service = FacturacionService(
            token_cache=self.token_cache,
            client=self.client,
            pdf_renderer=renderer,
        )

        resultado = service.emitir_comprobante(self.emisor.pk, solicitud_factura())

        self.assertEqual(resultado["estado"], "ENVIADO")
        renderer.assert_called_once()
        self.assertEqual(DocumentoElectronico.objects.get().pdf_url, "")

    def test_nota_credito_sin_referencias(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.emitir_comprobante(self.emisor.pk, solicitud_factura(), tipo_documento="03")

        self.assertFalse(DocumentoElectronico.objects.exists())
        self.emisor.refresh_from_db()
        self.assertEqual(self.emisor.consecutivo, 0)

    def test_emisor_inexistente(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.emitir_comprobante(9999, solicitud_factura())

    def test_emisor_inactivo(self) -> None:
        self.emisor.is_active = False
        self.emisor.save()
        with self.assertRaises(ValidationError):
            self.service.emitir_comprobante(self.emisor.pk, solicitud_factura())

    def test_monto_no_finito_no_consume_consecutivo(self) -> None:
        data = solicitud_factura()
        data["resumen_factura"] = dict(data["resumen_factura"], total_comprobante="NaN")

        with self.assertRaises(ValidationError):
            self.service.emitir_comprobante(self.emisor.pk, data)

        self.emisor.refresh_from_db()
        self.assertEqual(self.emisor.consecutivo, 0)
        self.assertFalse(DocumentoElectronico.objects.exists())

    # ===================================================================
    # Mensaje receptor
    # ===================================================================

    def _mensaje(self, **overrides) -> dict:
        data = {
            "clave_externo": "506" + "100524" + "003101999999" + "0" * 20 + "1" + "12345678",
            "numero_cedula_emisor": "3101999999",
            "fecha_emision_doc": "2024-05-10T09:00:00-06:00",
            "mensaje": "1",
            "total_factura": "11300",
            "numero_cedula_receptor": "3101123456",
        }
        data.update(overrides)
        return data

    def test_mensaje_receptor_aceptacion(self) -> None:
        data = self._mensaje()
        resultado = self.service.emitir_mensaje_receptor(self.emisor.pk, data)

        documento = DocumentoElectronico.objects.get(pk=resultado["documento_id"])
        self.assertEqual(documento.tipo_documento, "05")
        self.assertEqual(documento.estado_interno, Estado.ENVIADO)
        self.assertEqual(documento.clave_referencia, data["clave_externo"])
        self.assertEqual(
            documento.clave_consulta,
            f"{data['clave_externo']}-{documento.numero_consecutivo}",
        )

        payload = self.client.enviar_comprobante.call_args[0][0]
        self.assertEqual(payload["clave"], data["clave_externo"])
        self.assertEqual(payload["consecutivoReceptor"], documento.numero_consecutivo)
        self.assertEqual(payload["receptor"]["numeroIdentificacion"], "3101123456")
        verificar_firma(base64.b64decode(payload["comprobanteXml"]))

    def test_mensaje_receptor_de_otra_cedula(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.emitir_mensaje_receptor(
                self.emisor.pk, self._mensaje(numero_cedula_receptor="114480790")
            )
        self.assertFalse(DocumentoElectronico.objects.exists())


class CodigoSeguridadTests(TestCase):
    def test_modos(self) -> None:
        self.assertIsNone(codigo_seguridad_para(15, "aleatorio"))
        self.assertEqual(codigo_seguridad_para(15, "consecutivo"), "00000015")
        with self.assertRaises(ValidationError):
            codigo_seguridad_para(15, "otro")

    def test_modo_consecutivo_genera_clave_valida(self) -> None:
        consecutivo = claves.generar_consecutivo(1, 1, "01", 15)
        clave = claves.generar_clave(
            "3101123456", consecutivo, codigo_seguridad=codigo_seguridad_para(15, "consecutivo")
        )
        self.assertTrue(clave.endswith("00000015"))
