# facturacion/management/commands/revisar_comprobantes.py
# -*- coding: utf-8 -*-
"""
Ejecuta una corrida del poller de Hacienda o lista los documentos estancados.

Uso:

    python manage.py revisar_comprobantes
    python manage.py revisar_comprobantes --estancados
"""

from django.core.management.base import BaseCommand

from facturacion.apps import get_poller


class Command(BaseCommand):
    help = "Consulta en Hacienda el estado de los comprobantes ENVIADO."

    def add_arguments(self, parser):
        parser.add_argument(
            "--estancados",
            action="store_true",
            help="Solo lista los documentos ENVIADO que alcanzaron el máximo de intentos.",
        )

    def handle(self, *args, **options):
        poller = get_poller()

        if options.get("estancados"):
            estancados = poller.repository.find_stuck_submitted(poller.max_intentos)
            if not estancados:
                self.stdout.write(self.style.SUCCESS("No hay comprobantes estancados."))
                return
            for doc in estancados:
                self.stdout.write(
                    f"{doc.pk}\t{doc.clave_numerica}\t{doc.emisor.identificacion}\t"
                    f"intentos={doc.intentos_envio}\t{doc.created_at:%Y-%m-%d %H:%M}"
                )
            self.stdout.write(
                self.style.WARNING(f"{len(estancados)} comprobantes estancados.")
            )
            return

        resumen = poller.revisar_pendientes()
        if resumen.get("omitido"):
            self.stdout.write(self.style.WARNING("Otra revisión está en curso; se omite."))
            return

        self.stdout.write(
            self.style.SUCCESS(
                "Revisados: {revisados} | Aceptados: {aceptados} | Rechazados: {rechazados} | "
                "En proceso: {en_proceso} | Fallidos: {fallidos} | Estancados: {estancados}".format(
                    **resumen
                )
            )
        )
