# facturacion/services/hacienda/repository.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Acceso a almacenamiento usado por el orquestador y el poller.

`ComprobanteRepository` es la interfaz; `DjangoComprobanteRepository` la
implementa con el ORM. Cada operación es atómica y las actualizaciones de
varias filas (estado + XML + log) se aplican en una sola transacción.
"""

import abc
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from facturacion.models import (
    DocumentoElectronico,
    EmisorCredenciales,
    LogTransaccion,
    XmlAlmacen,
)

from .exceptions import InvariantViolation, NotFoundError

logger = logging.getLogger("facturacion.hacienda")

Estado = DocumentoElectronico.Estado

# Transiciones permitidas de la máquina de estados
TRANSICIONES: Dict[str, Tuple[str, ...]] = {
    Estado.CREADO: (Estado.FIRMANDO,),
    Estado.FIRMANDO: (Estado.ENVIADO,),
    Estado.ENVIADO: (Estado.ACEPTADO, Estado.RECHAZADO),
    Estado.ACEPTADO: (),
    Estado.RECHAZADO: (),
}

# Campos de XmlAlmacen que se escriben una sola vez
XML_UNA_VEZ = ("xml_firmado", "xml_respuesta_mh")

# Campos del documento que puede tocar update_document_state además del estado
CAMPOS_ACTUALIZABLES = ("pdf_url",)

LogEntrada = Tuple[str, Optional[str]]


def validar_transicion(actual: str, nuevo: str) -> None:
    if nuevo not in TRANSICIONES.get(actual, ()):
        raise InvariantViolation(
            f"Transición de estado ilegal: {actual} -> {nuevo}"
        )


class ComprobanteRepository(abc.ABC):
    @abc.abstractmethod
    def find_issuer(self, emisor_id: int) -> Any:
        """Emisor por id; NotFoundError si no existe."""

    @abc.abstractmethod
    def increment_sequence(self, emisor_id: int) -> int:
        """Incrementa y devuelve el consecutivo del emisor en una sola operación atómica."""

    @abc.abstractmethod
    def create_document(
        self,
        *,
        emisor_id: int,
        clave: str,
        consecutivo: str,
        tipo_documento: str,
        monto_total: Decimal,
        xml_generado: str,
        correo_receptor: Optional[str] = None,
        clave_referencia: Optional[str] = None,
        logs: Sequence[LogEntrada] = (),
    ) -> int:
        """Crea documento en CREADO + XML generado + logs iniciales. Devuelve el id."""

    @abc.abstractmethod
    def update_document_state(
        self,
        documento_id: int,
        estado: Optional[str] = None,
        campos: Optional[Dict[str, Any]] = None,
        xml: Optional[Dict[str, str]] = None,
        incrementar_intentos: bool = False,
        log: Optional[LogEntrada] = None,
    ) -> None:
        """Aplica estado/campos/XML/log en una sola unidad atómica."""

    @abc.abstractmethod
    def append_log(self, documento_id: int, accion: str, resultado: Optional[str] = None) -> None:
        ...

    @abc.abstractmethod
    def find_pending_submitted(self, max_intentos: int) -> List[Any]:
        """Documentos ENVIADO con intentos_envio < max_intentos."""

    @abc.abstractmethod
    def find_stuck_submitted(self, max_intentos: int) -> List[Any]:
        """Documentos ENVIADO que ya alcanzaron el techo de intentos."""

    @abc.abstractmethod
    def find_document(self, documento_id: int) -> Any:
        ...


class DjangoComprobanteRepository(ComprobanteRepository):
    def find_issuer(self, emisor_id: int) -> EmisorCredenciales:
        try:
            return EmisorCredenciales.objects.get(pk=emisor_id)
        except EmisorCredenciales.DoesNotExist as exc:
            raise NotFoundError(f"Emisor no encontrado: {emisor_id}") from exc

    def increment_sequence(self, emisor_id: int) -> int:
        # El UPDATE bloquea la fila hasta el commit: nadie más puede leer
        # ni asignar el mismo valor entre el incremento y la lectura.
        with transaction.atomic():
            updated = EmisorCredenciales.objects.filter(pk=emisor_id).update(
                consecutivo=F("consecutivo") + 1
            )
            if not updated:
                raise NotFoundError(f"Emisor no encontrado: {emisor_id}")
            return (
                EmisorCredenciales.objects.filter(pk=emisor_id)
                .values_list("consecutivo", flat=True)
                .get()
            )

    @transaction.atomic
    def create_document(
        self,
        *,
        emisor_id: int,
        clave: str,
        consecutivo: str,
        tipo_documento: str,
        monto_total: Decimal,
        xml_generado: str,
        correo_receptor: Optional[str] = None,
        clave_referencia: Optional[str] = None,
        logs: Sequence[LogEntrada] = (),
    ) -> int:
        if len(clave) != 50 or len(consecutivo) != 20:
            raise InvariantViolation(
                f"Clave/consecutivo con longitud inválida ({len(clave)}/{len(consecutivo)})."
            )

        documento = DocumentoElectronico.objects.create(
            emisor_id=emisor_id,
            clave_numerica=clave,
            numero_consecutivo=consecutivo,
            tipo_documento=tipo_documento,
            monto_total=monto_total,
            estado_interno=Estado.CREADO,
            correo_receptor=correo_receptor or "",
            clave_referencia=clave_referencia or "",
        )
        XmlAlmacen.objects.create(documento=documento, xml_generado=xml_generado)
        self._crear_logs(documento.pk, logs)
        return documento.pk

    def update_document_state(
        self,
        documento_id: int,
        estado: Optional[str] = None,
        campos: Optional[Dict[str, Any]] = None,
        xml: Optional[Dict[str, str]] = None,
        incrementar_intentos: bool = False,
        log: Optional[LogEntrada] = None,
    ) -> None:
        campos = dict(campos or {})
        xml = dict(xml or {})

        invalidos = set(campos) - set(CAMPOS_ACTUALIZABLES)
        if invalidos:
            raise InvariantViolation(f"Campos no actualizables: {sorted(invalidos)}")

        with transaction.atomic():
            try:
                documento = (
                    DocumentoElectronico.objects.select_for_update()
                    .get(pk=documento_id)
                )
            except DocumentoElectronico.DoesNotExist as exc:
                raise NotFoundError(f"Documento no encontrado: {documento_id}") from exc

            update_fields: Dict[str, Any] = dict(campos)
            if estado is not None:
                validar_transicion(documento.estado_interno, estado)
                update_fields["estado_interno"] = estado
            if incrementar_intentos:
                update_fields["intentos_envio"] = F("intentos_envio") + 1

            if update_fields:
                # auto_now no aplica en .update()
                update_fields["updated_at"] = timezone.now()
                DocumentoElectronico.objects.filter(pk=documento_id).update(**update_fields)

            if xml:
                self._guardar_xml(documento_id, xml)

            if log is not None:
                self._crear_logs(documento_id, [log])

        if estado is not None:
            logger.info(
                "Documento %s: %s -> %s",
                documento_id,
                documento.estado_interno,
                estado,
            )

    def append_log(self, documento_id: int, accion: str, resultado: Optional[str] = None) -> None:
        LogTransaccion.objects.create(
            documento_id=documento_id,
            accion=accion[:255],
            resultado_json=resultado or "",
        )

    def find_pending_submitted(self, max_intentos: int) -> List[DocumentoElectronico]:
        return list(
            DocumentoElectronico.objects.select_related("emisor", "xml_almacen")
            .filter(estado_interno=Estado.ENVIADO, intentos_envio__lt=max_intentos)
            .order_by("created_at", "id")
        )

    def find_stuck_submitted(self, max_intentos: int) -> List[DocumentoElectronico]:
        return list(
            DocumentoElectronico.objects.select_related("emisor")
            .filter(estado_interno=Estado.ENVIADO, intentos_envio__gte=max_intentos)
            .order_by("created_at", "id")
        )

    def find_document(self, documento_id: int) -> DocumentoElectronico:
        try:
            return DocumentoElectronico.objects.select_related(
                "emisor", "xml_almacen"
            ).get(pk=documento_id)
        except DocumentoElectronico.DoesNotExist as exc:
            raise NotFoundError(f"Documento no encontrado: {documento_id}") from exc

    # -------------------------------------------------------------------

    def _guardar_xml(self, documento_id: int, xml: Dict[str, str]) -> None:
        almacen = XmlAlmacen.objects.select_for_update().get(documento_id=documento_id)
        for campo, valor in xml.items():
            if campo not in XML_UNA_VEZ:
                raise InvariantViolation(f"Campo XML no modificable: {campo}")
            if getattr(almacen, campo):
                raise InvariantViolation(
                    f"{campo} del documento {documento_id} ya fue escrito."
                )
            setattr(almacen, campo, valor)
        almacen.save(update_fields=list(xml))

    @staticmethod
    def _crear_logs(documento_id: int, logs: Iterable[LogEntrada]) -> None:
        LogTransaccion.objects.bulk_create(
            [
                LogTransaccion(
                    documento_id=documento_id,
                    accion=accion[:255],
                    resultado_json=resultado or "",
                )
                for accion, resultado in logs
            ]
        )
