# facturacion/models.py
from __future__ import annotations

from django.db import models


class EmisorCredenciales(models.Model):
    """
    Emisor de comprobantes electrónicos ante Hacienda CR.
    Guarda credenciales ATV, llave criptográfica (.p12) y el consecutivo interno.
    """

    # ----- Identidad -----
    identificacion = models.CharField(
        max_length=12,
        unique=True,
        help_text="Cédula física (9 dígitos) o jurídica (10 dígitos), sin guiones.",
    )
    nombre = models.CharField(max_length=255)
    nombre_comercial = models.CharField(max_length=255, blank=True)
    correo_electronico = models.EmailField(blank=True)
    codigo_actividad = models.CharField(
        max_length=6,
        blank=True,
        help_text=(
            "Código de actividad económica (6 dígitos). "
            "Si se deja vacío se usa HACIENDA_CODIGO_ACTIVIDAD."
        ),
    )

    # ----- Credenciales ATV -----
    usuario_atv = models.CharField(
        max_length=255,
        help_text="Usuario del API de comprobantes (cpf-xx-xxxx-xxxx@stag.comprobanteselectronicos.go.cr).",
    )
    password_atv = models.CharField(max_length=255)

    # ----- Llave criptográfica -----
    certificado_p12 = models.BinaryField(
        null=True,
        blank=True,
        editable=True,
        help_text="Contenido del archivo .p12 descargado de ATV.",
    )
    pin_certificado = models.CharField(
        max_length=64,
        blank=True,
        help_text="PIN de 4 dígitos de la llave criptográfica.",
    )

    # ----- Numeración -----
    consecutivo = models.PositiveBigIntegerField(
        default=0,
        help_text=(
            "Último número usado. Se incrementa de forma atómica (F() + 1) "
            "una vez por comprobante emitido."
        ),
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Emisor"
        verbose_name_plural = "Emisores"

    def __str__(self) -> str:
        return f"{self.nombre} ({self.identificacion})"

    def save(self, *args, **kwargs):
        # consecutivo solo cambia con increment_sequence (F() + 1); una copia
        # vieja en memoria no debe pisar el valor de la BD.
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None:
                update_fields = [
                    f.name
                    for f in self._meta.concrete_fields
                    if not f.primary_key
                ]
            kwargs["update_fields"] = [f for f in update_fields if f != "consecutivo"]
        super().save(*args, **kwargs)

    @property
    def tiene_certificado(self) -> bool:
        return bool(self.certificado_p12) and bool(self.pin_certificado)


class DocumentoElectronico(models.Model):
    """
    Comprobante (FE/ND/NC/TE) o mensaje receptor emitido por un emisor.

    Estados: CREADO -> FIRMANDO -> ENVIADO -> ACEPTADO | RECHAZADO
    """

    class Estado(models.TextChoices):
        CREADO = "CREADO", "Creado"
        FIRMANDO = "FIRMANDO", "Firmando"
        ENVIADO = "ENVIADO", "Enviado a Hacienda"
        ACEPTADO = "ACEPTADO", "Aceptado"
        RECHAZADO = "RECHAZADO", "Rechazado"

    class TipoDocumento(models.TextChoices):
        FACTURA = "01", "Factura electrónica"
        NOTA_DEBITO = "02", "Nota de débito electrónica"
        NOTA_CREDITO = "03", "Nota de crédito electrónica"
        TIQUETE = "04", "Tiquete electrónico"
        ACEPTACION = "05", "Mensaje receptor: aceptación"
        ACEPTACION_PARCIAL = "06", "Mensaje receptor: aceptación parcial"
        RECHAZO = "07", "Mensaje receptor: rechazo"

    TIPOS_MENSAJE = ("05", "06", "07")

    emisor = models.ForeignKey(
        EmisorCredenciales,
        on_delete=models.PROTECT,
        related_name="documentos",
    )
    clave_numerica = models.CharField(max_length=50, unique=True)
    numero_consecutivo = models.CharField(max_length=20)
    tipo_documento = models.CharField(
        max_length=2,
        choices=TipoDocumento.choices,
        default=TipoDocumento.FACTURA,
    )
    monto_total = models.DecimalField(max_digits=18, decimal_places=5, default=0)

    estado_interno = models.CharField(
        max_length=20,
        choices=Estado.choices,
        default=Estado.CREADO,
        db_index=True,
    )
    intentos_envio = models.PositiveIntegerField(
        default=0,
        help_text="Envíos y consultas a Hacienda. Solo aumenta.",
    )

    pdf_url = models.CharField(max_length=500, blank=True)
    correo_receptor = models.EmailField(
        blank=True,
        help_text="Correo al que se notifica la resolución de Hacienda.",
    )
    clave_referencia = models.CharField(
        max_length=50,
        blank=True,
        help_text="Clave del comprobante de terceros al que responde un mensaje receptor.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Documento electrónico"
        verbose_name_plural = "Documentos electrónicos"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["estado_interno", "intentos_envio"]),
        ]

    def __str__(self) -> str:
        return f"{self.get_tipo_documento_display()} {self.numero_consecutivo} ({self.estado_interno})"

    @property
    def es_mensaje_receptor(self) -> bool:
        return self.tipo_documento in self.TIPOS_MENSAJE

    @property
    def clave_consulta(self) -> str:
        """
        Clave con la que se consulta el estado en Hacienda.
        Los mensajes receptor se consultan como {clave_externa}-{consecutivo}.
        """
        if self.es_mensaje_receptor and self.clave_referencia:
            return f"{self.clave_referencia}-{self.numero_consecutivo}"
        return self.clave_numerica


class XmlAlmacen(models.Model):
    """
    XMLs del documento: generado (inmutable), firmado y respuesta de Hacienda
    (cada uno se escribe una sola vez).
    """

    documento = models.OneToOneField(
        DocumentoElectronico,
        on_delete=models.CASCADE,
        related_name="xml_almacen",
    )
    xml_generado = models.TextField()
    xml_firmado = models.TextField(
        null=True,
        blank=True,
        help_text="XML firmado en base64, tal como se envió a recepción.",
    )
    xml_respuesta_mh = models.TextField(
        null=True,
        blank=True,
        help_text="MensajeHacienda en base64.",
    )

    class Meta:
        verbose_name = "XML del documento"
        verbose_name_plural = "XMLs de documentos"

    def __str__(self) -> str:
        return f"XML {self.documento.clave_numerica}"


class LogTransaccion(models.Model):
    """Bitácora append-only de acciones sobre un documento."""

    documento = models.ForeignKey(
        DocumentoElectronico,
        on_delete=models.CASCADE,
        related_name="logs",
    )
    accion = models.CharField(max_length=255)
    resultado_json = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Log de transacción"
        verbose_name_plural = "Logs de transacción"
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.documento_id} - {self.accion}"
