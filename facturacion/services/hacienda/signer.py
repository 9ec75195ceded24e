# facturacion/services/hacienda/signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import hashlib
import logging
import uuid
from datetime import datetime
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import Encoding
from django.utils import timezone
from lxml import etree

from .certificado import MaterialFirma
from .exceptions import FacturacionError, SchemaError, SigningError

logger = logging.getLogger("facturacion.hacienda")

# Namespaces requeridos
NAMESPACES = {
    "ds": "http://www.w3.org/2000/09/xmldsig#",
    "xades": "http://uri.etsi.org/01903/v1.3.2#",
}

C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
SIGNED_PROPERTIES_TYPE = "http://uri.etsi.org/01903#SignedProperties"

# Política de firma de la resolución DGT-R-48-2016; el digest es constante
POLITICA_FIRMA_URL = (
    "https://tribunet.hacienda.go.cr/docs/esquemas/2016/v4.1/"
    "Resolucion_Comprobantes_Electronicos_DGT-R-48-2016.pdf"
)
POLITICA_FIRMA_DIGEST = "Vnn0OwgH+Fk5Y7VfByl3xH0pBVk="

RAICES_FIRMABLES = (
    "FacturaElectronica",
    "NotaDebitoElectronica",
    "NotaCreditoElectronica",
    "TiqueteElectronico",
    "MensajeReceptor",
)


def _canonicalize(element: etree._Element) -> bytes:
    """
    Canonicalización C14N INCLUSIVA (no exclusiva), sin comentarios.
    """
    return etree.tostring(
        element,
        method="c14n",
        exclusive=False,
        with_comments=False,
    )


def _sha256_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def _cert_b64(cert: x509.Certificate) -> str:
    return base64.b64encode(cert.public_bytes(Encoding.DER)).decode("ascii")


def _parse_documento(xml: str | bytes) -> etree._Element:
    data = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        root = etree.fromstring(data)
    except etree.XMLSyntaxError as exc:
        raise SchemaError("parseo", f"XML mal formado: {exc}") from exc

    qname = etree.QName(root)
    if not qname.namespace:
        raise SchemaError(
            "namespace",
            f"El nodo raíz <{qname.localname}> no declara namespace.",
        )
    if qname.localname not in RAICES_FIRMABLES:
        raise SigningError(
            "referencia_documento",
            f"Nodo raíz no firmable: {qname.localname}",
        )
    return root


def _ds(parent: etree._Element, tag: str, text: Optional[str] = None, **attrib: str) -> etree._Element:
    elem = etree.SubElement(parent, f"{{{NAMESPACES['ds']}}}{tag}", **attrib)
    if text is not None:
        elem.text = text
    return elem


def _xades(parent: etree._Element, tag: str, text: Optional[str] = None, **attrib: str) -> etree._Element:
    elem = etree.SubElement(parent, f"{{{NAMESPACES['xades']}}}{tag}", **attrib)
    if text is not None:
        elem.text = text
    return elem


def _build_qualifying_properties(
    ds_object: etree._Element,
    material: MaterialFirma,
    signature_id: str,
    signed_props_id: str,
    reference_id: str,
    signing_time: datetime,
) -> None:
    """
    <xades:QualifyingProperties> con SigningTime, SigningCertificate,
    SignaturePolicyIdentifier y DataObjectFormat.
    """
    cert = material.certificate

    qualifying = _xades(ds_object, "QualifyingProperties", Target=f"#{signature_id}")
    signed_props = _xades(qualifying, "SignedProperties", Id=signed_props_id)
    signed_sig_props = _xades(signed_props, "SignedSignatureProperties")

    _xades(signed_sig_props, "SigningTime", signing_time.isoformat())

    signing_cert = _xades(signed_sig_props, "SigningCertificate")
    cert_elem = _xades(signing_cert, "Cert")
    cert_digest = _xades(cert_elem, "CertDigest")
    _ds(cert_digest, "DigestMethod", Algorithm=SHA256)
    _ds(cert_digest, "DigestValue", _sha256_b64(cert.public_bytes(Encoding.DER)))
    issuer_serial = _xades(cert_elem, "IssuerSerial")
    _ds(issuer_serial, "X509IssuerName", cert.issuer.rfc4514_string())
    _ds(issuer_serial, "X509SerialNumber", str(cert.serial_number))

    policy = _xades(signed_sig_props, "SignaturePolicyIdentifier")
    policy_id = _xades(policy, "SignaturePolicyId")
    sig_policy_id = _xades(policy_id, "SigPolicyId")
    _xades(sig_policy_id, "Identifier", POLITICA_FIRMA_URL)
    _xades(sig_policy_id, "Description")
    policy_hash = _xades(policy_id, "SigPolicyHash")
    _ds(policy_hash, "DigestMethod", Algorithm=SHA1)
    _ds(policy_hash, "DigestValue", POLITICA_FIRMA_DIGEST)

    signed_data = _xades(signed_props, "SignedDataObjectProperties")
    data_format = _xades(signed_data, "DataObjectFormat", ObjectReference=f"#{reference_id}")
    _xades(data_format, "MimeType", "text/xml")
    _xades(data_format, "Encoding", "UTF-8")


def firmar_xml_bytes(
    xml: str | bytes,
    material: MaterialFirma,
    signing_time: Optional[datetime] = None,
) -> bytes:
    """
    Firma el comprobante con XAdES-EPES (RSA-SHA256) y devuelve el XML firmado.

    Orden de hijos en <ds:Signature>:
        1. <ds:SignedInfo> (Reference al documento + Reference a SignedProperties)
        2. <ds:SignatureValue>
        3. <ds:KeyInfo>
        4. <ds:Object> (QualifyingProperties)

    La firma completa se arma como un solo árbol y se agrega como último hijo
    del nodo raíz. El digest de SignedProperties se calcula sobre el nodo tal
    como queda en el documento final (serializar + reparsear).
    """
    root = _parse_documento(xml)

    ds_ns = NAMESPACES["ds"]
    xades_ns = NAMESPACES["xades"]
    uid = uuid.uuid4().hex
    signature_id = f"Signature-{uid}"
    signed_props_id = f"SignedProperties-{signature_id}"
    reference_id = f"Reference-{uid}"
    signing_time = signing_time or timezone.localtime()

    paso = "digest_documento"
    try:
        # 1. Digest del documento SIN firma (transform enveloped)
        root_digest = _sha256_b64(_canonicalize(root))

        # 2. Árbol <ds:Signature>
        paso = "estructura_firma"
        signature = etree.Element(
            f"{{{ds_ns}}}Signature",
            Id=signature_id,
            nsmap={"ds": ds_ns, "xades": xades_ns},
        )
        signed_info = _ds(signature, "SignedInfo")
        _ds(signed_info, "CanonicalizationMethod", Algorithm=C14N)
        _ds(signed_info, "SignatureMethod", Algorithm=RSA_SHA256)

        reference_root = _ds(signed_info, "Reference", Id=reference_id, URI="")
        transforms_root = _ds(reference_root, "Transforms")
        _ds(transforms_root, "Transform", Algorithm=ENVELOPED)
        _ds(reference_root, "DigestMethod", Algorithm=SHA256)
        _ds(reference_root, "DigestValue", root_digest)

        reference_props = _ds(
            signed_info,
            "Reference",
            Type=SIGNED_PROPERTIES_TYPE,
            URI=f"#{signed_props_id}",
        )
        transforms_props = _ds(reference_props, "Transforms")
        _ds(transforms_props, "Transform", Algorithm=C14N)
        _ds(reference_props, "DigestMethod", Algorithm=SHA256)
        _ds(reference_props, "DigestValue", "")

        _ds(signature, "SignatureValue", "", Id=f"SignatureValue-{signature_id}")

        key_info = _ds(signature, "KeyInfo", Id=f"KeyInfo-{signature_id}")
        x509_data = _ds(key_info, "X509Data")
        _ds(x509_data, "X509Certificate", _cert_b64(material.certificate))
        for additional_cert in material.additional_certs:
            _ds(x509_data, "X509Certificate", _cert_b64(additional_cert))

        paso = "signed_properties"
        ds_object = _ds(signature, "Object")
        _build_qualifying_properties(
            ds_object,
            material,
            signature_id,
            signed_props_id,
            reference_id,
            signing_time,
        )

        # 3. Firma como último hijo del nodo raíz
        root.append(signature)

        # 4. SERIALIZAR + REPARSEAR para digest estable de SignedProperties
        paso = "reparseo"
        root = etree.fromstring(etree.tostring(root, encoding="UTF-8"))
        signature = root.find(f"{{{ds_ns}}}Signature")
        signed_props = root.find(
            f".//{{{xades_ns}}}SignedProperties[@Id='{signed_props_id}']",
        )
        if signature is None or signed_props is None:
            raise SigningError(paso, "No se encontró la firma después de re-parsear el XML.")

        paso = "digest_signed_properties"
        props_reference = signature.find(
            f"{{{ds_ns}}}SignedInfo/{{{ds_ns}}}Reference[@URI='#{signed_props_id}']",
        )
        props_reference.find(f"{{{ds_ns}}}DigestValue").text = _sha256_b64(
            _canonicalize(signed_props)
        )

        # 5. SignatureValue: RSA-SHA256 sobre SignedInfo canonicalizado
        paso = "firma_rsa"
        signed_info = signature.find(f"{{{ds_ns}}}SignedInfo")
        signature_bytes = material.private_key.sign(
            _canonicalize(signed_info),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        signature.find(f"{{{ds_ns}}}SignatureValue").text = base64.b64encode(
            signature_bytes
        ).decode("ascii")

        paso = "serializacion"
        xml_firmado = etree.tostring(
            root,
            encoding="UTF-8",
            xml_declaration=True,
            pretty_print=False,
        )
    except FacturacionError:
        raise
    except Exception as exc:
        logger.exception("Error al firmar XML (paso %s): %s", paso, exc)
        raise SigningError(paso, str(exc)) from exc

    logger.info(
        "XML %s firmado con XAdES-EPES (RSA-SHA256), certificado %s",
        etree.QName(root).localname,
        material.sujeto,
    )
    return xml_firmado


def firmar_xml(
    xml: str | bytes,
    material: MaterialFirma,
    signing_time: Optional[datetime] = None,
) -> str:
    """XML firmado codificado en base64, tal como lo recibe la API de recepción."""
    xml_firmado = firmar_xml_bytes(xml, material, signing_time=signing_time)
    return base64.b64encode(xml_firmado).decode("ascii")
