# facturacion/tests/test_admin.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.contrib import admin
from django.contrib.auth.models import User
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import RequestFactory, TestCase

from facturacion.admin import EmisorCredencialesForm
from facturacion.models import EmisorCredenciales
from facturacion.services.hacienda.certificado import material_de_emisor
from facturacion.services.hacienda.repository import DjangoComprobanteRepository

from .utils import PIN, p12_valido


class EmisorCredencialesFormTests(TestCase):
    def _data(self, **overrides) -> dict:
        data = {
            "identificacion": "3101123456",
            "nombre": "EMPRESA PRUEBA SA",
            "usuario_atv": "cpj-3-101-123456@stag.comprobanteselectronicos.go.cr",
            "password_atv": "secreto",
            "pin_certificado": PIN,
            "consecutivo": 0,
            "is_active": True,
        }
        data.update(overrides)
        return data

    def test_sube_p12_como_bytes(self) -> None:
        form = EmisorCredencialesForm(
            data=self._data(),
            files={"archivo_p12": SimpleUploadedFile("llave.p12", p12_valido())},
        )
        self.assertTrue(form.is_valid(), form.errors)

        emisor = form.save()
        emisor.refresh_from_db()
        self.assertTrue(emisor.tiene_certificado)
        self.assertIsNotNone(material_de_emisor(emisor).certificate)

    def test_sin_archivo_conserva_llave(self) -> None:
        form = EmisorCredencialesForm(
            data=self._data(),
            files={"archivo_p12": SimpleUploadedFile("llave.p12", p12_valido())},
        )
        self.assertTrue(form.is_valid(), form.errors)
        emisor = form.save()

        form = EmisorCredencialesForm(data=self._data(nombre="OTRO NOMBRE"), instance=emisor)
        self.assertTrue(form.is_valid(), form.errors)
        form.save()

        emisor.refresh_from_db()
        self.assertEqual(emisor.nombre, "OTRO NOMBRE")
        self.assertEqual(bytes(emisor.certificado_p12), p12_valido())


class EmisorConsecutivoTests(TestCase):
    """Guardar una copia vieja del emisor no retrocede el consecutivo."""

    def setUp(self) -> None:
        self.repo = DjangoComprobanteRepository()
        self.emisor = EmisorCredenciales.objects.create(
            identificacion="3101123456",
            nombre="EMPRESA PRUEBA SA",
            usuario_atv="usuario",
            password_atv="secreto",
        )

    def test_save_model_del_admin_conserva_consecutivo(self) -> None:
        model_admin = admin.site._registry[EmisorCredenciales]
        request = RequestFactory().post("/admin/")
        request.user = User(is_superuser=True, is_staff=True)

        copia = EmisorCredenciales.objects.get(pk=self.emisor.pk)
        self.repo.increment_sequence(self.emisor.pk)
        self.repo.increment_sequence(self.emisor.pk)

        form_class = model_admin.get_form(request, copia, change=True)
        form = form_class(
            data={
                "identificacion": "3101123456",
                "nombre": "NOMBRE EDITADO",
                "usuario_atv": "usuario",
                "password_atv": "secreto",
                "is_active": True,
            },
            instance=copia,
        )
        self.assertTrue(form.is_valid(), form.errors)
        obj = form.save(commit=False)
        model_admin.save_model(request, obj, form, change=True)

        self.emisor.refresh_from_db()
        self.assertEqual(self.emisor.nombre, "NOMBRE EDITADO")
        self.assertEqual(self.emisor.consecutivo, 2)

    def test_save_directo_ignora_consecutivo(self) -> None:
        copia = EmisorCredenciales.objects.get(pk=self.emisor.pk)
        self.repo.increment_sequence(self.emisor.pk)

        copia.consecutivo = 0
        copia.save()
        copia.save(update_fields=["nombre", "consecutivo"])

        self.emisor.refresh_from_db()
        self.assertEqual(self.emisor.consecutivo, 1)
        self.assertEqual(self.repo.increment_sequence(self.emisor.pk), 2)
