import ipaddress

from cryptography import x509

from web.run import ensure_certificate


def test_self_signed_certificate(tmp_path):
    cert_path, key_path = ensure_certificate(tmp_path / "certs", hosts=["0.0.0.0", "192.168.1.20", "media.lan"])

    cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert set(san.get_values_for_type(x509.DNSName)) == {"localhost", "media.lan"}
    assert ipaddress.ip_address("192.168.1.20") in san.get_values_for_type(x509.IPAddress)
    assert ipaddress.ip_address("0.0.0.0") not in san.get_values_for_type(x509.IPAddress)
    assert key_path.stat().st_mode & 0o777 == 0o600


def test_existing_certificate_is_reused(tmp_path):
    cert_path, _ = ensure_certificate(tmp_path)
    first = cert_path.read_bytes()

    assert ensure_certificate(tmp_path)[0].read_bytes() == first
