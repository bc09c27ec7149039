import hmac, hashlib

def compute_hmac_sha256_hex(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode('utf-8'), body, hashlib.sha256)
    return mac.hexdigest()

def keys_match(expected: str | None, given: str | None) -> bool:
    if not expected or not given:
        return False
    return hmac.compare_digest(expected.encode('utf-8'), given.encode('utf-8'))
