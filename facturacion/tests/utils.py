# facturacion/tests/utils.py
# -*- coding: utf-8 -*-
"""
Helpers compartidos por los tests de facturación:

- generar_p12: llave criptográfica de prueba (RSA + certificado autofirmado).
- solicitud_factura: payload mínimo de emisión.
- verificar_firma: verificador XML-DSig independiente del firmador.
"""
from __future__ import annotations

import base64
import copy
import datetime as dt
import hashlib
from functools import lru_cache
from typing import Any, Dict

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

DS = "http://www.w3.org/2000/09/xmldsig#"
PIN = "1234"


class FirmaInvalida(Exception):
    pass


@lru_cache(maxsize=None)
def _llave() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _certificado(key: rsa.RSAPrivateKey, dias_inicio: int, dias_fin: int) -> x509.Certificate:
    nombre = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "CR"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "EMPRESA PRUEBA SA"),
            x509.NameAttribute(NameOID.COMMON_NAME, "EMPRESA PRUEBA SA"),
        ]
    )
    ahora = dt.datetime.now(dt.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(nombre)
        .issuer_name(nombre)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(ahora + dt.timedelta(days=dias_inicio))
        .not_valid_after(ahora + dt.timedelta(days=dias_fin))
        .sign(key, hashes.SHA256())
    )


def generar_p12(
    pin: str = PIN,
    con_llave: bool = True,
    vencido: bool = False,
) -> bytes:
    key = _llave()
    if vencido:
        cert = _certificado(key, -30, -1)
    else:
        cert = _certificado(key, -1, 365)
    return pkcs12.serialize_key_and_certificates(
        b"emisor-prueba",
        key if con_llave else None,
        cert,
        None,
        BestAvailableEncryption(pin.encode("utf-8")),
    )


@lru_cache(maxsize=None)
def p12_valido() -> bytes:
    return generar_p12()


def solicitud_factura(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "sucursal": 1,
        "caja": 1,
        "condicion_venta": "01",
        "medio_pago": ["01"],
        "receptor": {
            "nombre": "Cliente de Prueba",
            "tipo_identificacion": "01",
            "identificacion": "114480790",
            "correo_electronico": "cliente@example.com",
        },
        "lineas_detalle": [
            {
                "numero_linea": 7,
                "codigo": "8399000000000",
                "cantidad": "2",
                "unidad_medida": "Sp",
                "detalle": "Servicio de soporte",
                "precio_unitario": "5000",
                "monto_total": "10000",
                "sub_total": "10000",
                "impuestos": [
                    {"codigo": "01", "codigo_tarifa": "08", "tarifa": "13", "monto": "1300"},
                ],
                "monto_total_linea": "11300",
            }
        ],
        "resumen_factura": {
            "codigo_moneda": "CRC",
            "total_serv_gravados": "10000",
            "total_gravado": "10000",
            "total_venta": "10000",
            "total_venta_neta": "10000",
            "total_impuesto": "1300",
            "total_comprobante": "11300",
        },
    }
    data.update(overrides)
    return data


def _c14n(element: etree._Element) -> bytes:
    return etree.tostring(element, method="c14n", exclusive=False, with_comments=False)


def verificar_firma(xml_firmado: bytes) -> None:
    """
    Recalcula los digests de cada Reference y verifica SignatureValue con la
    llave pública del X509Certificate incluido. Lanza FirmaInvalida.
    """
    root = etree.fromstring(xml_firmado)
    ns = {"ds": DS}
    firma = root.find("ds:Signature", ns)
    if firma is None:
        raise FirmaInvalida("Sin ds:Signature")

    signed_info = firma.find("ds:SignedInfo", ns)
    for reference in signed_info.findall("ds:Reference", ns):
        uri = reference.get("URI")
        if uri == "":
            documento = copy.deepcopy(root)
            documento.remove(documento.find("ds:Signature", ns))
            datos = _c14n(documento)
        else:
            objetivos = root.xpath(f"//*[@Id='{uri[1:]}']")
            if not objetivos:
                raise FirmaInvalida(f"Reference sin objetivo: {uri}")
            datos = _c14n(objetivos[0])
        digest = base64.b64encode(hashlib.sha256(datos).digest()).decode("ascii")
        if digest != reference.findtext("ds:DigestValue", namespaces=ns):
            raise FirmaInvalida(f"Digest no coincide para Reference {uri!r}")

    cert_der = base64.b64decode(firma.findtext(".//ds:X509Certificate", namespaces=ns))
    cert = x509.load_der_x509_certificate(cert_der)
    try:
        cert.public_key().verify(
            base64.b64decode(firma.findtext("ds:SignatureValue", namespaces=ns)),
            _c14n(signed_info),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except InvalidSignature as exc:
        raise FirmaInvalida("SignatureValue inválido") from exc
