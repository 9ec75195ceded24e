# facturacion/services/hacienda/tipos.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Estructuras de entrada para emisión de comprobantes (v4.3).

Las solicitudes llegan como dict (JSON del POS / backoffice) y se convierten
con `from_dict`, que valida lo mínimo requerido y lanza ValidationError.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import ValidationError

TIPO_FACTURA = "01"
TIPO_NOTA_DEBITO = "02"
TIPO_NOTA_CREDITO = "03"
TIPO_TIQUETE = "04"
TIPO_MENSAJE_ACEPTACION = "05"
TIPO_MENSAJE_ACEPTACION_PARCIAL = "06"
TIPO_MENSAJE_RECHAZO = "07"

TIPOS_COMPROBANTE = (TIPO_FACTURA, TIPO_NOTA_DEBITO, TIPO_NOTA_CREDITO, TIPO_TIQUETE)

# Mensaje del receptor: 1=aceptado, 2=aceptado parcial, 3=rechazado
TIPO_POR_MENSAJE: Dict[str, str] = {
    "1": TIPO_MENSAJE_ACEPTACION,
    "2": TIPO_MENSAJE_ACEPTACION_PARCIAL,
    "3": TIPO_MENSAJE_RECHAZO,
}

CONDICION_CREDITO = "02"


def _decimal(data: Mapping[str, Any], campo: str, requerido: bool = True) -> Optional[Decimal]:
    valor = data.get(campo)
    if valor is None or valor == "":
        if requerido:
            raise ValidationError(f"Falta el campo '{campo}'.")
        return None
    try:
        numero = Decimal(str(valor))
        # Debe caber con 5 decimales (precisión por defecto: 28 dígitos)
        numero.quantize(Decimal("0.00001"))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"'{campo}' no es un número válido: {valor!r}") from exc
    if not numero.is_finite():
        raise ValidationError(f"'{campo}' no es un número válido: {valor!r}")
    return numero


def _texto(data: Mapping[str, Any], campo: str, requerido: bool = True) -> Optional[str]:
    valor = data.get(campo)
    if valor is None or str(valor).strip() == "":
        if requerido:
            raise ValidationError(f"Falta el campo '{campo}'.")
        return None
    return str(valor).strip()


@dataclass
class Ubicacion:
    provincia: str
    canton: str
    distrito: str
    otras_senas: str
    barrio: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Ubicacion":
        return cls(
            provincia=_texto(data, "provincia"),
            canton=_texto(data, "canton"),
            distrito=_texto(data, "distrito"),
            otras_senas=_texto(data, "otras_senas"),
            barrio=_texto(data, "barrio", requerido=False),
        )


@dataclass
class Receptor:
    nombre: str
    tipo_identificacion: str
    identificacion: str
    correo_electronico: Optional[str] = None
    ubicacion: Optional[Ubicacion] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Receptor":
        ubicacion = data.get("ubicacion")
        return cls(
            nombre=_texto(data, "nombre"),
            tipo_identificacion=_texto(data, "tipo_identificacion"),
            identificacion=_texto(data, "identificacion"),
            correo_electronico=_texto(data, "correo_electronico", requerido=False),
            ubicacion=Ubicacion.from_dict(ubicacion) if ubicacion else None,
        )


@dataclass
class Impuesto:
    codigo: str
    codigo_tarifa: str
    tarifa: Decimal
    monto: Decimal

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Impuesto":
        return cls(
            codigo=_texto(data, "codigo"),
            codigo_tarifa=_texto(data, "codigo_tarifa"),
            tarifa=_decimal(data, "tarifa"),
            monto=_decimal(data, "monto"),
        )


@dataclass
class Descuento:
    monto: Decimal
    naturaleza: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Descuento":
        return cls(
            monto=_decimal(data, "monto"),
            naturaleza=_texto(data, "naturaleza"),
        )


@dataclass
class LineaDetalle:
    codigo: str
    cantidad: Decimal
    unidad_medida: str
    detalle: str
    precio_unitario: Decimal
    monto_total: Decimal
    sub_total: Decimal
    monto_total_linea: Decimal
    numero_linea: Optional[int] = None
    descuento: Optional[Descuento] = None
    impuestos: List[Impuesto] = field(default_factory=list)
    impuesto_neto: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LineaDetalle":
        descuento = data.get("descuento")
        return cls(
            codigo=_texto(data, "codigo"),
            cantidad=_decimal(data, "cantidad"),
            unidad_medida=_texto(data, "unidad_medida"),
            detalle=_texto(data, "detalle"),
            precio_unitario=_decimal(data, "precio_unitario"),
            monto_total=_decimal(data, "monto_total"),
            sub_total=_decimal(data, "sub_total"),
            monto_total_linea=_decimal(data, "monto_total_linea"),
            numero_linea=data.get("numero_linea"),
            descuento=Descuento.from_dict(descuento) if descuento else None,
            impuestos=[Impuesto.from_dict(i) for i in data.get("impuestos") or []],
            impuesto_neto=_decimal(data, "impuesto_neto", requerido=False),
        )

    @property
    def impuesto_neto_calculado(self) -> Optional[Decimal]:
        if self.impuesto_neto is not None:
            return self.impuesto_neto
        if not self.impuestos:
            return None
        return sum((i.monto for i in self.impuestos), Decimal("0"))


RESUMEN_TOTALES = (
    "total_serv_gravados",
    "total_serv_exentos",
    "total_serv_exonerado",
    "total_mercancias_gravadas",
    "total_mercancias_exentas",
    "total_mercancias_exonerada",
    "total_gravado",
    "total_exento",
    "total_exonerado",
    "total_venta",
    "total_descuentos",
    "total_venta_neta",
    "total_impuesto",
    "total_comprobante",
)


@dataclass
class ResumenFactura:
    codigo_moneda: str
    total_venta: Decimal
    total_venta_neta: Decimal
    total_comprobante: Decimal
    tipo_cambio: Decimal = Decimal("1")
    total_serv_gravados: Decimal = Decimal("0")
    total_serv_exentos: Decimal = Decimal("0")
    total_serv_exonerado: Decimal = Decimal("0")
    total_mercancias_gravadas: Decimal = Decimal("0")
    total_mercancias_exentas: Decimal = Decimal("0")
    total_mercancias_exonerada: Decimal = Decimal("0")
    total_gravado: Decimal = Decimal("0")
    total_exento: Decimal = Decimal("0")
    total_exonerado: Decimal = Decimal("0")
    total_descuentos: Decimal = Decimal("0")
    total_impuesto: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResumenFactura":
        valores: Dict[str, Any] = {
            "codigo_moneda": _texto(data, "codigo_moneda"),
            "total_venta": _decimal(data, "total_venta"),
            "total_venta_neta": _decimal(data, "total_venta_neta"),
            "total_comprobante": _decimal(data, "total_comprobante"),
        }
        tipo_cambio = _decimal(data, "tipo_cambio", requerido=False)
        if tipo_cambio is not None:
            valores["tipo_cambio"] = tipo_cambio
        for campo in RESUMEN_TOTALES:
            if campo in valores:
                continue
            valor = _decimal(data, campo, requerido=False)
            if valor is not None:
                valores[campo] = valor
        return cls(**valores)


@dataclass
class Referencia:
    tipo_documento: str
    numero: str
    fecha_emision: str
    codigo: str
    razon: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Referencia":
        return cls(
            tipo_documento=_texto(data, "tipo_documento"),
            numero=_texto(data, "numero"),
            fecha_emision=_texto(data, "fecha_emision"),
            codigo=_texto(data, "codigo"),
            razon=_texto(data, "razon"),
        )


@dataclass
class CreacionComprobanteRequest:
    sucursal: int
    caja: int
    condicion_venta: str
    medio_pago: List[str]
    lineas_detalle: List[LineaDetalle]
    resumen_factura: ResumenFactura
    receptor: Optional[Receptor] = None
    plazo_credito: Optional[str] = None
    referencias: List[Referencia] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CreacionComprobanteRequest":
        if not isinstance(data, Mapping):
            raise ValidationError("La solicitud de emisión debe ser un objeto.")

        resumen = data.get("resumen_factura")
        if not resumen:
            raise ValidationError("Falta el campo 'resumen_factura'.")

        receptor = data.get("receptor")
        medio_pago = data.get("medio_pago") or []
        if isinstance(medio_pago, str):
            medio_pago = [medio_pago]

        try:
            sucursal = int(data.get("sucursal", 1))
            caja = int(data.get("caja", 1))
        except (TypeError, ValueError) as exc:
            raise ValidationError("'sucursal' y 'caja' deben ser enteros.") from exc

        return cls(
            sucursal=sucursal,
            caja=caja,
            condicion_venta=_texto(data, "condicion_venta"),
            medio_pago=[str(m).strip() for m in medio_pago],
            lineas_detalle=[LineaDetalle.from_dict(l) for l in data.get("lineas_detalle") or []],
            resumen_factura=ResumenFactura.from_dict(resumen),
            receptor=Receptor.from_dict(receptor) if receptor else None,
            plazo_credito=_texto(data, "plazo_credito", requerido=False),
            referencias=[Referencia.from_dict(r) for r in data.get("referencias") or []],
        )

    def validar(self, tipo_documento: str) -> None:
        if tipo_documento not in TIPOS_COMPROBANTE:
            raise ValidationError(f"Tipo de documento no soportado: {tipo_documento!r}")
        if not self.lineas_detalle:
            raise ValidationError("El comprobante debe tener al menos una línea de detalle.")
        if not self.medio_pago:
            raise ValidationError("Debe indicar al menos un medio de pago.")
        if self.condicion_venta == CONDICION_CREDITO and not self.plazo_credito:
            raise ValidationError("Venta a crédito requiere 'plazo_credito'.")
        if tipo_documento in (TIPO_NOTA_DEBITO, TIPO_NOTA_CREDITO) and not self.referencias:
            raise ValidationError(
                "Las notas de débito/crédito requieren al menos una referencia."
            )
        if self.sucursal < 0 or self.caja < 0:
            raise ValidationError("'sucursal' y 'caja' no pueden ser negativos.")

    @property
    def correo_receptor(self) -> Optional[str]:
        return self.receptor.correo_electronico if self.receptor else None


@dataclass
class MensajeReceptorRequest:
    clave_externo: str
    numero_cedula_emisor: str
    fecha_emision_doc: str
    mensaje: str
    total_factura: Decimal
    numero_cedula_receptor: str
    detalle_mensaje: Optional[str] = None
    monto_total_impuesto: Optional[Decimal] = None
    condicion_impuesto: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MensajeReceptorRequest":
        if not isinstance(data, Mapping):
            raise ValidationError("El mensaje receptor debe ser un objeto.")
        return cls(
            clave_externo=_texto(data, "clave_externo"),
            numero_cedula_emisor=_texto(data, "numero_cedula_emisor"),
            fecha_emision_doc=_texto(data, "fecha_emision_doc"),
            mensaje=_texto(data, "mensaje"),
            total_factura=_decimal(data, "total_factura"),
            numero_cedula_receptor=_texto(data, "numero_cedula_receptor"),
            detalle_mensaje=_texto(data, "detalle_mensaje", requerido=False),
            monto_total_impuesto=_decimal(data, "monto_total_impuesto", requerido=False),
            condicion_impuesto=_texto(data, "condicion_impuesto", requerido=False),
        )

    def validar(self) -> None:
        if self.mensaje not in TIPO_POR_MENSAJE:
            raise ValidationError(
                f"Mensaje receptor inválido: {self.mensaje!r} (use 1, 2 o 3)."
            )
        if len(self.clave_externo) != 50 or not self.clave_externo.isdigit():
            raise ValidationError("'clave_externo' debe ser una clave de 50 dígitos.")

    @property
    def tipo_documento(self) -> str:
        return TIPO_POR_MENSAJE[self.mensaje]
