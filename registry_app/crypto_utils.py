import base64
import hashlib
import hmac
import json

from cryptography.fernet import Fernet

# ---------- HASHING ----------
def sha256_hash(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()

# ---------- PRINCIPAL SIGNATURES ----------
# The identity gateway signs each principal with a shared secret; the API
# only trusts a principal whose signature checks out.
def sign_principal(principal: str, secret: bytes) -> str:
    return hmac.new(secret, principal.encode("utf-8"), hashlib.sha256).hexdigest()

def verify_principal(principal: str, signature: str, secret: bytes) -> bool:
    if not principal or not signature:
        return False
    return hmac.compare_digest(sign_principal(principal, secret), signature)

# ---------- EVENT JOURNAL ENCRYPTION ----------
def get_cipher(master_key: bytes) -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(master_key).digest())
    return Fernet(key)

def seal_event(event: dict, cipher: Fernet) -> bytes:
    return cipher.encrypt(json.dumps(event, sort_keys=True).encode("utf-8"))

def open_event(token: bytes, cipher: Fernet) -> dict:
    return json.loads(cipher.decrypt(token).decode("utf-8"))
