# facturacion/tests/test_repository.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import threading
from decimal import Decimal

from django.db import connection
from django.test import TestCase, TransactionTestCase

from facturacion.models import DocumentoElectronico, EmisorCredenciales, LogTransaccion
from facturacion.services.hacienda.exceptions import InvariantViolation, NotFoundError
from facturacion.services.hacienda.repository import (
    DjangoComprobanteRepository,
    validar_transicion,
)

Estado = DocumentoElectronico.Estado


class TransicionesTests(TestCase):
    def test_transiciones_permitidas(self) -> None:
        validar_transicion(Estado.CREADO, Estado.FIRMANDO)
        validar_transicion(Estado.FIRMANDO, Estado.ENVIADO)
        validar_transicion(Estado.ENVIADO, Estado.ACEPTADO)
        validar_transicion(Estado.ENVIADO, Estado.RECHAZADO)

    def test_transiciones_ilegales(self) -> None:
        ilegales = [
            (Estado.CREADO, Estado.ENVIADO),
            (Estado.FIRMANDO, Estado.CREADO),
            (Estado.ENVIADO, Estado.FIRMANDO),
            (Estado.ACEPTADO, Estado.RECHAZADO),
            (Estado.RECHAZADO, Estado.ACEPTADO),
        ]
        for actual, nuevo in ilegales:
            with self.subTest(actual=actual, nuevo=nuevo):
                with self.assertRaises(InvariantViolation):
                    validar_transicion(actual, nuevo)


class DjangoComprobanteRepositoryTests(TestCase):
    """Persistencia atómica de documentos, XML y bitácora."""

    def setUp(self) -> None:
        self.repo = DjangoComprobanteRepository()
        self.emisor = EmisorCredenciales.objects.create(
            identificacion="3101123456",
            nombre="EMPRESA PRUEBA SA",
            usuario_atv="cpj-3-101-123456@stag.comprobanteselectronicos.go.cr",
            password_atv="secreto",
        )

    # ===================================================================
    # Helpers
    # ===================================================================

    def _crear_documento(self, clave: str = "5" * 50) -> int:
        return self.repo.create_document(
            emisor_id=self.emisor.pk,
            clave=clave,
            consecutivo="00100001010000000001",
            tipo_documento="01",
            monto_total=Decimal("11300"),
            xml_generado="<FacturaElectronica/>",
            correo_receptor="cliente@example.com",
            logs=[("Generación inicial del XML 4.3", None)],
        )

    def _llevar_a_enviado(self, documento_id: int) -> None:
        self.repo.update_document_state(documento_id, estado=Estado.FIRMANDO)
        self.repo.update_document_state(
            documento_id, estado=Estado.ENVIADO, incrementar_intentos=True
        )

    # ===================================================================
    # Tests
    # ===================================================================

    def test_increment_sequence_es_secuencial(self) -> None:
        self.assertEqual(self.repo.increment_sequence(self.emisor.pk), 1)
        self.assertEqual(self.repo.increment_sequence(self.emisor.pk), 2)
        self.assertEqual(self.repo.increment_sequence(self.emisor.pk), 3)

        self.emisor.refresh_from_db()
        self.assertEqual(self.emisor.consecutivo, 3)

    def test_increment_sequence_emisor_inexistente(self) -> None:
        with self.assertRaises(NotFoundError):
            self.repo.increment_sequence(9999)

    def test_find_issuer(self) -> None:
        self.assertEqual(self.repo.find_issuer(self.emisor.pk), self.emisor)
        with self.assertRaises(NotFoundError):
            self.repo.find_issuer(9999)

    def test_create_document(self) -> None:
        documento_id = self._crear_documento()
        documento = self.repo.find_document(documento_id)

        self.assertEqual(documento.estado_interno, Estado.CREADO)
        self.assertEqual(documento.intentos_envio, 0)
        self.assertEqual(documento.xml_almacen.xml_generado, "<FacturaElectronica/>")
        self.assertIsNone(documento.xml_almacen.xml_firmado)
        self.assertEqual(
            list(documento.logs.values_list("accion", flat=True)),
            ["Generación inicial del XML 4.3"],
        )

    def test_create_document_clave_invalida(self) -> None:
        with self.assertRaises(InvariantViolation):
            self._crear_documento(clave="123")
        self.assertFalse(DocumentoElectronico.objects.exists())

    def test_update_estado_xml_y_log_juntos(self) -> None:
        documento_id = self._crear_documento()
        self.repo.update_document_state(documento_id, estado=Estado.FIRMANDO)
        self.repo.update_document_state(
            documento_id,
            xml={"xml_firmado": "RklSTUFETw=="},
            log=("XML firmado (XAdES-EPES)", None),
        )

        documento = self.repo.find_document(documento_id)
        self.assertEqual(documento.estado_interno, Estado.FIRMANDO)
        self.assertEqual(documento.xml_almacen.xml_firmado, "RklSTUFETw==")
        self.assertEqual(documento.logs.count(), 2)

    def test_transicion_ilegal_no_aplica_nada(self) -> None:
        documento_id = self._crear_documento()

        with self.assertRaises(InvariantViolation):
            self.repo.update_document_state(
                documento_id,
                estado=Estado.ACEPTADO,
                incrementar_intentos=True,
                log=("no debería quedar", None),
            )

        documento = self.repo.find_document(documento_id)
        self.assertEqual(documento.estado_interno, Estado.CREADO)
        self.assertEqual(documento.intentos_envio, 0)
        self.assertEqual(documento.logs.count(), 1)

    def test_xml_firmado_se_escribe_una_vez(self) -> None:
        documento_id = self._crear_documento()
        self.repo.update_document_state(documento_id, xml={"xml_firmado": "UNO"})

        with self.assertRaises(InvariantViolation):
            self.repo.update_document_state(documento_id, xml={"xml_firmado": "DOS"})
        self.assertEqual(self.repo.find_document(documento_id).xml_almacen.xml_firmado, "UNO")

    def test_xml_generado_no_es_modificable(self) -> None:
        documento_id = self._crear_documento()
        with self.assertRaises(InvariantViolation):
            self.repo.update_document_state(documento_id, xml={"xml_generado": "<otro/>"})

    def test_campos_no_actualizables(self) -> None:
        documento_id = self._crear_documento()
        with self.assertRaises(InvariantViolation):
            self.repo.update_document_state(documento_id, campos={"clave_numerica": "1" * 50})

    def test_intentos_solo_aumentan(self) -> None:
        documento_id = self._crear_documento()
        self._llevar_a_enviado(documento_id)
        self.repo.update_document_state(documento_id, incrementar_intentos=True)

        self.assertEqual(self.repo.find_document(documento_id).intentos_envio, 2)

    def test_pendientes_y_estancados(self) -> None:
        pendiente = self._crear_documento(clave="1" * 50)
        estancado = self._crear_documento(clave="2" * 50)
        self._crear_documento(clave="3" * 50)  # sigue en CREADO

        self._llevar_a_enviado(pendiente)
        self._llevar_a_enviado(estancado)
        for _ in range(4):
            self.repo.update_document_state(estancado, incrementar_intentos=True)

        pendientes = self.repo.find_pending_submitted(max_intentos=5)
        estancados = self.repo.find_stuck_submitted(max_intentos=5)

        self.assertEqual([d.pk for d in pendientes], [pendiente])
        self.assertEqual([d.pk for d in estancados], [estancado])

    def test_append_log(self) -> None:
        documento_id = self._crear_documento()
        self.repo.append_log(documento_id, "Fallo al firmar o enviar", '{"error": "X"}')

        ultimo = LogTransaccion.objects.filter(documento_id=documento_id).last()
        self.assertEqual(ultimo.accion, "Fallo al firmar o enviar")
        self.assertEqual(ultimo.resultado_json, '{"error": "X"}')


class IncrementSequenceConcurrenteTests(TransactionTestCase):
    """Varios hilos emitiendo para el mismo emisor nunca reciben el mismo número."""

    HILOS = 8
    POR_HILO = 5

    def test_incrementos_paralelos_sin_duplicados(self) -> None:
        emisor = EmisorCredenciales.objects.create(
            identificacion="3101123456",
            nombre="EMPRESA PRUEBA SA",
            usuario_atv="usuario",
            password_atv="secreto",
        )
        repo = DjangoComprobanteRepository()
        barrera = threading.Barrier(self.HILOS)
        numeros: list = []
        errores: list = []
        lock = threading.Lock()

        def emitir() -> None:
            try:
                barrera.wait()
                for _ in range(self.POR_HILO):
                    numero = repo.increment_sequence(emisor.pk)
                    with lock:
                        numeros.append(numero)
            except Exception as exc:
                errores.append(exc)
            finally:
                connection.close()

        hilos = [threading.Thread(target=emitir) for _ in range(self.HILOS)]
        for hilo in hilos:
            hilo.start()
        for hilo in hilos:
            hilo.join()

        total = self.HILOS * self.POR_HILO
        self.assertEqual(errores, [])
        self.assertEqual(len(set(numeros)), total)
        self.assertEqual(sorted(numeros), list(range(1, total + 1)))

        emisor.refresh_from_db()
        self.assertEqual(emisor.consecutivo, total)
