#!/usr/bin/env python3
"""Entry point: launches the cliptr web service via Uvicorn over HTTPS."""

import datetime
import ipaddress
import logging
import os
from pathlib import Path
from typing import Iterable, Tuple

import uvicorn
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from cliptr.src.config import Settings

WEB_DIR = Path(__file__).resolve().parent
CERTS_DIR = WEB_DIR / "certs"
CERT_VALID_DAYS = 365

logger = logging.getLogger(__name__)


def _subject_alt_names(hosts: Iterable[str]) -> list:
    names = [x509.DNSName("localhost"), x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
    for host in hosts:
        if not host or host in ("localhost", "127.0.0.1", "0.0.0.0", "::"):
            continue
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            names.append(x509.DNSName(host))
    return names


def ensure_certificate(certs_dir: Path = CERTS_DIR, hosts: Iterable[str] = ()) -> Tuple[Path, Path]:
    """
    Return ``(cert_path, key_path)``, creating a self-signed pair if either is missing.

    The certificate covers localhost, 127.0.0.1 and any extra ``hosts`` the
    service binds to.
    """
    cert_path = certs_dir / "cert.pem"
    key_path = certs_dir / "key.pem"
    if cert_path.exists() and key_path.exists():
        return cert_path, key_path

    certs_dir.mkdir(parents=True, exist_ok=True)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "cliptr"),
        x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
    ])
    valid_from = datetime.datetime.now(datetime.timezone.utc)

    builder = x509.CertificateBuilder()
    builder = builder.subject_name(name).issuer_name(name)
    builder = builder.public_key(key.public_key()).serial_number(x509.random_serial_number())
    builder = builder.not_valid_before(valid_from)
    builder = builder.not_valid_after(valid_from + datetime.timedelta(days=CERT_VALID_DAYS))
    builder = builder.add_extension(x509.SubjectAlternativeName(_subject_alt_names(hosts)), critical=False)
    cert = builder.sign(key, hashes.SHA256())

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_pem)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    logger.info(f"Generated self-signed certificate in {certs_dir}")
    return cert_path, key_path


def main():
    level = logging.DEBUG if os.environ.get("CLIPTR_DEBUG") == "1" else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = Settings()
    cert_path, key_path = ensure_certificate(hosts=[settings.host])

    # Capture processes live in this process; a reloader would orphan them.
    uvicorn.run(
        "web.app:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        ssl_certfile=str(cert_path),
        ssl_keyfile=str(key_path),
    )


if __name__ == "__main__":
    main()
