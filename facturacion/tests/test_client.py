# facturacion/tests/test_client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from unittest.mock import MagicMock

import requests
from django.test import SimpleTestCase

from facturacion.services.hacienda.client import HaciendaClient
from facturacion.services.hacienda.exceptions import TransportError

BASE_URL = "https://api.test/recepcion"


def _respuesta(status_code: int, payload=None, text: str = "", headers=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload or {}
    return response


class EnviarComprobanteTests(SimpleTestCase):
    def setUp(self) -> None:
        self.session = MagicMock()
        self.client = HaciendaClient(base_url=BASE_URL + "/", timeout=5, session=self.session)
        self.payload = {"clave": "5" * 50, "comprobanteXml": "PD94bWw="}

    def test_202_es_recibido(self) -> None:
        self.session.post.return_value = _respuesta(202, headers={"Location": f"{BASE_URL}/{'5' * 50}"})

        respuesta = self.client.enviar_comprobante(self.payload, "tok")

        self.assertEqual(respuesta.status_code, 202)
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], BASE_URL)
        self.assertEqual(kwargs["json"], self.payload)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")
        self.assertEqual(kwargs["timeout"], 5)

    def test_400_con_x_error_cause(self) -> None:
        self.session.post.return_value = _respuesta(
            400,
            text="",
            headers={"X-Error-Cause": "El comprobante ya fue recibido"},
        )
        with self.assertRaises(TransportError) as ctx:
            self.client.enviar_comprobante(self.payload, "tok")

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.respuesta, "El comprobante ya fue recibido")
        self.assertFalse(ctx.exception.retryable)

    def test_500_es_reintentable(self) -> None:
        self.session.post.return_value = _respuesta(503, text="caído")
        with self.assertRaises(TransportError) as ctx:
            self.client.enviar_comprobante(self.payload, "tok")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.respuesta, "caído")

    def test_timeout(self) -> None:
        self.session.post.side_effect = requests.Timeout("lento")
        with self.assertRaises(TransportError):
            self.client.enviar_comprobante(self.payload, "tok")
        self.assertEqual(self.session.post.call_count, 1)


class ConsultarEstadoTests(SimpleTestCase):
    def setUp(self) -> None:
        self.session = MagicMock()
        self.client = HaciendaClient(base_url=BASE_URL, timeout=5, session=self.session)
        self.clave = "5" * 50

    def test_aceptado(self) -> None:
        self.session.get.return_value = _respuesta(
            200,
            payload={"clave": self.clave, "ind-estado": "ACEPTADO", "respuesta-xml": "UkVTUA=="},
        )
        estado = self.client.consultar_estado(self.clave, "tok")

        self.assertEqual(self.session.get.call_args[0][0], f"{BASE_URL}/{self.clave}")
        self.assertEqual(estado.estado, "aceptado")
        self.assertTrue(estado.resuelto)
        self.assertEqual(estado.respuesta_xml, "UkVTUA==")

    def test_procesando_no_resuelto(self) -> None:
        self.session.get.return_value = _respuesta(200, payload={"ind-estado": "procesando"})
        estado = self.client.consultar_estado(self.clave, "tok")

        self.assertFalse(estado.resuelto)
        self.assertIsNone(estado.respuesta_xml)
        self.assertEqual(estado.clave, self.clave)

    def test_404(self) -> None:
        self.session.get.return_value = _respuesta(404, text="no existe")
        with self.assertRaises(TransportError) as ctx:
            self.client.consultar_estado(self.clave, "tok")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_cuerpo_no_json(self) -> None:
        self.session.get.return_value = _respuesta(200, payload=ValueError("no json"))
        with self.assertRaises(TransportError):
            self.client.consultar_estado(self.clave, "tok")

    def test_error_de_red(self) -> None:
        self.session.get.side_effect = requests.ConnectionError("sin red")
        with self.assertRaises(TransportError):
            self.client.consultar_estado(self.clave, "tok")
