"""Encrypted on-disk storage for Citronus API credentials.

Credentials come from ``CITRONUS_API_KEY``/``CITRONUS_API_SECRET`` when both
are set, otherwise from a :class:`CredentialStore` file unlocked by
``CITRONUS_SECRET_PW`` or an interactive password prompt. The store also
records which API endpoint the key pair was validated against, since
Citronus keys are issued per environment.
"""

from __future__ import annotations

import base64
import getpass
import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from citronus_client.config import get_config_dir
from citronus_client.credentials import CredentialResult, CredentialStatus
from citronus_client.logging_config import structured_log_extra

logger = logging.getLogger(__name__)

SECRETS_FILE_NAME = "secrets.enc"
ENV_API_KEY = "CITRONUS_API_KEY"
ENV_API_SECRET = "CITRONUS_API_SECRET"
ENV_SECRET_PASSWORD = "CITRONUS_SECRET_PW"

STORE_VERSION = 1
_SALT_SIZE = 16
_KDF_ITERATIONS = 480000

PasswordPrompt = Callable[[], str]


class SecretsDecryptionError(Exception):
    """Raised when the store cannot be opened with the given password."""


@dataclass(frozen=True)
class StoredCredentials:
    api_key: str
    api_secret: str
    api_url: Optional[str] = None
    validated: Optional[bool] = None
    validated_at: Optional[str] = None
    validation_error: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"StoredCredentials(api_url={self.api_url!r}, validated={self.validated!r}, "
            f"validated_at={self.validated_at!r})"
        )


def _fernet(password: str, salt: bytes, iterations: int) -> Fernet:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8"))))


class CredentialStore:
    """
    One API key pair encrypted with a password-derived Fernet key.

    The file is a JSON envelope holding the PBKDF2 salt and iteration count
    next to the Fernet token, so files written with an older iteration count
    stay readable.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_config_dir() / SECRETS_FILE_NAME

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, credentials: StoredCredentials, password: str) -> None:
        salt = os.urandom(_SALT_SIZE)
        plaintext = json.dumps(asdict(credentials)).encode("utf-8")
        envelope = {
            "version": STORE_VERSION,
            "kdf": "pbkdf2-sha256",
            "iterations": _KDF_ITERATIONS,
            "salt": base64.b64encode(salt).decode("ascii"),
            "token": _fernet(password, salt, _KDF_ITERATIONS).encrypt(plaintext).decode("ascii"),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # User-only permissions from the moment the file exists.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(envelope, f)
        self.path.chmod(0o600)
        logger.info(
            "Credentials stored",
            extra=structured_log_extra(event="credentials_saved", path=str(self.path)),
        )

    def load(self, password: str) -> StoredCredentials:
        """
        Decrypts the stored key pair. A wrong password raises
        :class:`SecretsDecryptionError`; a file that is not a credential
        store raises ``ValueError``.
        """
        try:
            envelope = json.loads(self.path.read_text(encoding="utf-8"))
            if envelope.get("version") != STORE_VERSION:
                raise ValueError(f"unsupported version {envelope.get('version')!r}")
            salt = base64.b64decode(envelope["salt"], validate=True)
            iterations = int(envelope["iterations"])
            token = envelope["token"].encode("ascii")
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"{self.path} is not a Citronus credential store: {exc}") from exc

        try:
            data = json.loads(_fernet(password, salt, iterations).decrypt(token))
        except InvalidToken as exc:
            raise SecretsDecryptionError("Invalid password or corrupted secrets file.") from exc
        known = {f.name for f in fields(StoredCredentials)}
        return StoredCredentials(**{k: v for k, v in data.items() if k in known})


def persist_api_keys(
    api_key: str,
    api_secret: str,
    password: str,
    *,
    api_url: Optional[str] = None,
    validated: Optional[bool] = None,
    validation_error: Optional[str] = None,
    force_save_unvalidated: bool = False,
    store: Optional[CredentialStore] = None,
) -> StoredCredentials:
    """
    Encrypts the key pair into ``store`` (the user config dir by default).

    Keys that failed validation are only written when
    ``force_save_unvalidated`` is set, e.g. when Citronus could not be reached
    during setup.
    """
    if validated is False and not force_save_unvalidated:
        raise ValueError(
            "Refusing to save unvalidated credentials without force_save_unvalidated=True."
        )
    validated_at = None
    if validated is not None:
        validated_at = datetime.now(timezone.utc).isoformat()
    credentials = StoredCredentials(
        api_key=api_key,
        api_secret=api_secret,
        api_url=api_url,
        validated=validated,
        validated_at=validated_at,
        validation_error=validation_error,
    )
    (store or CredentialStore()).save(credentials, password)
    return credentials


def _ask_password() -> str:
    return getpass.getpass("Enter master password to decrypt API keys: ")


def _unavailable(status: CredentialStatus, source: str, message: str, **kwargs) -> CredentialResult:
    logger.warning(
        message,
        extra=structured_log_extra(event="credentials_unavailable", status=status.value, source=source),
    )
    return CredentialResult(None, None, status, source=source, validation_error=message, **kwargs)


def load_api_keys(
    interactive: bool = False,
    *,
    api_url: Optional[str] = None,
    store: Optional[CredentialStore] = None,
    password_prompt: Optional[PasswordPrompt] = None,
) -> CredentialResult:
    """
    Loads the key pair from the environment, else from the encrypted store.

    The store password comes from ``CITRONUS_SECRET_PW``; only when
    ``interactive`` is set is the user prompted for it. When ``api_url`` is
    given and the stored keys were validated against another endpoint, they
    are returned as unvalidated.
    """
    api_key = os.getenv(ENV_API_KEY)
    api_secret = os.getenv(ENV_API_SECRET)
    if bool(api_key) ^ bool(api_secret):
        return _unavailable(
            CredentialStatus.AUTH_ERROR,
            "environment",
            f"Both {ENV_API_KEY} and {ENV_API_SECRET} must be set together.",
        )
    if api_key and api_secret:
        return CredentialResult(api_key, api_secret, CredentialStatus.LOADED, source="environment")

    store = store or CredentialStore()
    if not store.exists():
        return CredentialResult(None, None, CredentialStatus.NOT_FOUND, source="none")

    password = os.getenv(ENV_SECRET_PASSWORD)
    if not password:
        if not interactive:
            return _unavailable(
                CredentialStatus.MISSING_PASSWORD,
                "secrets_file",
                f"Encrypted credentials found but {ENV_SECRET_PASSWORD} is not set; "
                "credentials are unavailable in non-interactive mode.",
            )
        password = (password_prompt or _ask_password)()

    try:
        stored = store.load(password)
    except SecretsDecryptionError as exc:
        return _unavailable(CredentialStatus.AUTH_ERROR, "secrets_file", str(exc), error=exc)
    except (OSError, ValueError) as exc:
        return _unavailable(CredentialStatus.SERVICE_ERROR, "secrets_file", str(exc), error=exc)

    validated = stored.validated
    validation_error = stored.validation_error
    if api_url and stored.api_url and stored.api_url.rstrip("/") != api_url.rstrip("/"):
        validated = False
        validation_error = f"Keys were validated against {stored.api_url}, not {api_url}."
        logger.warning(
            "Stored credentials belong to another endpoint",
            extra=structured_log_extra(event="credentials_endpoint_mismatch", api_url=api_url),
        )
    return CredentialResult(
        stored.api_key,
        stored.api_secret,
        CredentialStatus.LOADED,
        source="secrets_file",
        validated=validated,
        validation_error=validation_error,
    )
