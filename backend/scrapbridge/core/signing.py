import hashlib
import hmac
import json
from typing import Any, Dict

SIGNATURE_HEADER = "X-ScrapBridge-Signature"


def canonical_body(body: Dict[str, Any]) -> bytes:
    return json.dumps(body, separators=(",", ":"), sort_keys=True, default=str).encode()


def sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def verify(raw: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign(raw, secret), signature or "")
