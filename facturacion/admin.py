# facturacion/admin.py
from __future__ import annotations

from django import forms
from django.contrib import admin

from facturacion.models import (
    DocumentoElectronico,
    EmisorCredenciales,
    LogTransaccion,
    XmlAlmacen,
)


class EmisorCredencialesForm(forms.ModelForm):
    """
    El .p12 se sube como archivo y se guarda como bytes en certificado_p12.
    Dejar el campo vacío conserva la llave actual.
    """

    archivo_p12 = forms.FileField(
        required=False,
        label="Llave criptográfica (.p12)",
        help_text="Archivo descargado de ATV.",
    )

    class Meta:
        model = EmisorCredenciales
        exclude = ("certificado_p12",)
        widgets = {
            "password_atv": forms.PasswordInput(render_value=True),
            "pin_certificado": forms.PasswordInput(render_value=True),
        }

    def save(self, commit=True):
        emisor = super().save(commit=False)
        archivo = self.cleaned_data.get("archivo_p12")
        if archivo:
            emisor.certificado_p12 = archivo.read()
        if commit:
            emisor.save()
        return emisor


@admin.register(EmisorCredenciales)
class EmisorCredencialesAdmin(admin.ModelAdmin):
    form = EmisorCredencialesForm
    list_display = (
        "identificacion",
        "nombre",
        "usuario_atv",
        "consecutivo",
        "is_active",
        "created_at",
    )
    list_filter = ("is_active",)
    search_fields = ("identificacion", "nombre", "nombre_comercial")
    readonly_fields = ("consecutivo", "created_at", "updated_at")
    fieldsets = (
        (
            "Datos generales",
            {
                "fields": (
                    "identificacion",
                    "nombre",
                    "nombre_comercial",
                    "correo_electronico",
                    "codigo_actividad",
                    "is_active",
                )
            },
        ),
        (
            "Credenciales ATV",
            {
                "fields": (
                    "usuario_atv",
                    "password_atv",
                    "archivo_p12",
                    "pin_certificado",
                )
            },
        ),
        (
            "Numeración",
            {
                "fields": (
                    "consecutivo",
                    "created_at",
                    "updated_at",
                )
            },
        ),
    )


class XmlAlmacenInline(admin.StackedInline):
    model = XmlAlmacen
    can_delete = False
    extra = 0
    readonly_fields = ("xml_generado", "xml_firmado", "xml_respuesta_mh")


class LogTransaccionInline(admin.TabularInline):
    model = LogTransaccion
    can_delete = False
    extra = 0
    readonly_fields = ("accion", "resultado_json", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(DocumentoElectronico)
class DocumentoElectronicoAdmin(admin.ModelAdmin):
    list_display = (
        "numero_consecutivo",
        "tipo_documento",
        "emisor",
        "monto_total",
        "estado_interno",
        "intentos_envio",
        "created_at",
    )
    list_filter = ("estado_interno", "tipo_documento", "emisor")
    search_fields = ("clave_numerica", "numero_consecutivo", "correo_receptor")
    readonly_fields = (
        "emisor",
        "clave_numerica",
        "numero_consecutivo",
        "tipo_documento",
        "monto_total",
        "estado_interno",
        "intentos_envio",
        "pdf_url",
        "clave_referencia",
        "created_at",
        "updated_at",
    )
    inlines = [XmlAlmacenInline, LogTransaccionInline]

    def has_delete_permission(self, request, obj=None):
        return False
