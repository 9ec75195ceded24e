# facturacion/services/hacienda/claves.py
# -*- coding: utf-8 -*-
from __future__ import annotations

"""
Generación de consecutivo (20 dígitos) y clave numérica (50 caracteres)
según la resolución de comprobantes electrónicos de Hacienda CR.

Consecutivo: sucursal(3) + caja(5) + tipo_documento(2) + numero(10)
Clave:       506 + DDMMYY + cedula(12) + consecutivo(20) + situacion(1) + codigo_seguridad(8)
"""

import random
from datetime import date
from typing import Any, Dict, Optional

from django.utils import timezone

from .exceptions import InvalidInput, InvariantViolation

CODIGO_PAIS = "506"

LONGITUD_CONSECUTIVO = 20
LONGITUD_CLAVE = 50

# (campo, ancho)
ANCHOS_CONSECUTIVO = (
    ("sucursal", 3),
    ("caja", 5),
    ("tipo_documento", 2),
    ("numero", 10),
)

SITUACION_NORMAL = "1"
SITUACION_CONTINGENCIA = "2"
SITUACION_SIN_INTERNET = "3"

SITUACIONES: Dict[str, str] = {
    "NORMAL": SITUACION_NORMAL,
    "CONTINGENCIA": SITUACION_CONTINGENCIA,
    "SIN_INTERNET": SITUACION_SIN_INTERNET,
}

CODIGO_SEGURIDAD_MIN = 10000000
CODIGO_SEGURIDAD_MAX = 99999999

_rng = random.SystemRandom()


def _rellenar(valor: Any, ancho: int, campo: str) -> str:
    texto = str(valor).strip()
    if not texto.isdigit():
        raise InvalidInput(f"'{campo}' debe ser numérico (recibido: {valor!r}).")
    if len(texto) > ancho:
        raise InvalidInput(
            f"'{campo}' excede {ancho} dígitos (recibido: {texto})."
        )
    return texto.zfill(ancho)


def generar_consecutivo(sucursal: int, caja: int, tipo_documento: str, numero: int) -> str:
    """
    Arma el número consecutivo de 20 dígitos.

    Lanza InvalidInput si algún campo no cabe en su ancho.
    """
    valores = {
        "sucursal": sucursal,
        "caja": caja,
        "tipo_documento": tipo_documento,
        "numero": numero,
    }
    partes = [_rellenar(valores[campo], ancho, campo) for campo, ancho in ANCHOS_CONSECUTIVO]
    return "".join(partes)


def desglosar_consecutivo(consecutivo: str) -> Dict[str, str]:
    if len(consecutivo) != LONGITUD_CONSECUTIVO or not consecutivo.isdigit():
        raise InvalidInput(f"Consecutivo inválido: {consecutivo!r}")

    resultado: Dict[str, str] = {}
    pos = 0
    for campo, ancho in ANCHOS_CONSECUTIVO:
        resultado[campo] = consecutivo[pos:pos + ancho]
        pos += ancho
    return resultado


def normalizar_situacion(situacion: str) -> str:
    """Acepta '1'/'2'/'3' o NORMAL/CONTINGENCIA/SIN_INTERNET."""
    valor = str(situacion or SITUACION_NORMAL).strip().upper()
    if valor in SITUACIONES:
        return SITUACIONES[valor]
    if valor in SITUACIONES.values():
        return valor
    raise InvalidInput(f"Situación de emisión desconocida: {situacion!r}")


def generar_codigo_seguridad() -> str:
    return str(_rng.randint(CODIGO_SEGURIDAD_MIN, CODIGO_SEGURIDAD_MAX))


def generar_clave(
    identificacion_emisor: str,
    consecutivo: str,
    situacion: str = SITUACION_NORMAL,
    codigo_seguridad: Optional[str] = None,
    fecha: Optional[date] = None,
) -> str:
    """
    Arma la clave numérica de 50 caracteres.

    - `fecha` por defecto es la fecha local (America/Costa_Rica).
    - Sin `codigo_seguridad` se genera uno aleatorio de 8 dígitos.
    """
    cedula = _rellenar(identificacion_emisor, 12, "identificacion_emisor")

    if len(consecutivo or "") != LONGITUD_CONSECUTIVO or not consecutivo.isdigit():
        raise InvalidInput(
            f"El consecutivo debe tener {LONGITUD_CONSECUTIVO} dígitos (recibido: {consecutivo!r})."
        )

    codigo = codigo_seguridad if codigo_seguridad is not None else generar_codigo_seguridad()
    codigo = _rellenar(codigo, 8, "codigo_seguridad")

    fecha = fecha or timezone.localdate()

    clave = (
        f"{CODIGO_PAIS}"
        f"{fecha.strftime('%d%m%y')}"
        f"{cedula}"
        f"{consecutivo}"
        f"{normalizar_situacion(situacion)}"
        f"{codigo}"
    )

    if len(clave) != LONGITUD_CLAVE:
        raise InvariantViolation(
            f"Clave generada con longitud {len(clave)} (esperado {LONGITUD_CLAVE})."
        )
    return clave


def desglosar_clave(clave: str) -> Dict[str, str]:
    if len(clave or "") != LONGITUD_CLAVE or not clave.isdigit():
        raise InvalidInput(f"Clave inválida: {clave!r}")

    return {
        "pais": clave[0:3],
        "fecha": clave[3:9],
        "identificacion": clave[9:21],
        "consecutivo": clave[21:41],
        "situacion": clave[41],
        "codigo_seguridad": clave[42:50],
    }


def tipo_identificacion(identificacion: str) -> str:
    """
    Tipo de identificación del emisor inferido por longitud:
    9 dígitos -> 01 (física), cualquier otra -> 02 (jurídica).
    """
    return "01" if len(str(identificacion or "").strip()) == 9 else "02"
