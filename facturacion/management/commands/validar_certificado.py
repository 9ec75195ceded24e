# facturacion/management/commands/validar_certificado.py
# -*- coding: utf-8 -*-
"""
Valida la llave criptográfica (.p12) y el PIN de los emisores:

- Que exista el archivo y el PIN.
- Que el PIN abra el .p12 y contenga llave RSA + certificado.
- Vigencia del certificado.

Uso:

    python manage.py validar_certificado
    python manage.py validar_certificado --emisor=1
"""

from typing import Optional

from django.core.management.base import BaseCommand, CommandError

from facturacion.models import EmisorCredenciales
from facturacion.services.hacienda.certificado import material_de_emisor
from facturacion.services.hacienda.exceptions import CertificateError


class Command(BaseCommand):
    help = "Verifica el certificado .p12 y PIN de cada emisor."

    def add_arguments(self, parser):
        parser.add_argument(
            "--emisor",
            type=int,
            dest="emisor_id",
            help="ID de emisor específico a validar.",
        )

    def handle(self, *args, **options):
        emisor_id: Optional[int] = options.get("emisor_id")
        qs = EmisorCredenciales.objects.all()

        if emisor_id is not None:
            qs = qs.filter(id=emisor_id)
            if not qs.exists():
                raise CommandError(f"No existe emisor con id={emisor_id}.")

        if not qs.exists():
            raise CommandError("No hay emisores configurados.")

        total_errores = 0
        for emisor in qs:
            self.stdout.write(
                self.style.NOTICE(f"\n▶ Emisor {emisor.id} – {emisor.nombre} ({emisor.identificacion})")
            )
            try:
                material = material_de_emisor(emisor)
            except CertificateError as exc:
                total_errores += 1
                self.stdout.write(self.style.ERROR(f"  ✖ {exc}"))
                continue

            inicio, fin = material.vigencia
            self.stdout.write(self.style.SUCCESS("  ✔ Certificado válido"))
            self.stdout.write(f"    Sujeto: {material.sujeto}")
            self.stdout.write(f"    Emisor: {material.certificate.issuer.rfc4514_string()}")
            self.stdout.write(f"    Vigencia: {inicio:%Y-%m-%d} a {fin:%Y-%m-%d}")

        if total_errores:
            raise CommandError(f"{total_errores} emisor(es) con certificado inválido.")
