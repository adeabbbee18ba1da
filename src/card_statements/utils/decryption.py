"""Password-protected PDF decryption with bounded, sequential attempts."""

import io
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from pypdf import PdfReader, PdfWriter
from pypdf.errors import DependencyError, FileNotDecryptedError, PdfReadError, PdfStreamError

from ..models.core import DecryptedDocument, PasswordCandidate
from .error_handler import DecryptionExhausted, FatalDecryptionError


logger = logging.getLogger(__name__)


class DecryptionBackend(ABC):
    """Primitive that tries a single password against a document"""

    @abstractmethod
    def is_encrypted(self, data: bytes) -> bool:
        """Return True if the document needs a password

        Raises:
            FatalDecryptionError: If the bytes are not a readable PDF
        """
        pass

    @abstractmethod
    def try_password(self, data: bytes, password: str) -> Optional[bytes]:
        """Return plaintext PDF bytes, or None if the password is wrong

        Raises:
            FatalDecryptionError: On corrupt input or an unusable tool
        """
        pass


class PypdfBackend(DecryptionBackend):
    """Decryption backend built on pypdf"""

    def _reader(self, data: bytes) -> PdfReader:
        if not data:
            raise FatalDecryptionError("Document is empty")
        try:
            return PdfReader(io.BytesIO(data))
        except (PdfReadError, PdfStreamError, ValueError) as e:
            raise FatalDecryptionError(f"Document is not a readable PDF: {e}") from e
        except ImportError as e:
            # AES-encrypted files need pypdf's optional crypto dependency
            raise FatalDecryptionError(f"Decryption support unavailable: {e}") from e

    def is_encrypted(self, data: bytes) -> bool:
        reader = self._reader(data)
        if not reader.is_encrypted:
            return False
        # Owner-password-only files open with an empty user password
        try:
            return not reader.decrypt("")
        except FileNotDecryptedError:
            return True
        except (DependencyError, NotImplementedError) as e:
            raise FatalDecryptionError(f"Decryption support unavailable: {e}") from e

    def try_password(self, data: bytes, password: str) -> Optional[bytes]:
        reader = self._reader(data)
        if not reader.is_encrypted:
            return data

        try:
            if not reader.decrypt(password):
                return None
            writer = PdfWriter()
            for page in reader.pages:
                writer.add_page(page)
            buffer = io.BytesIO()
            writer.write(buffer)
            return buffer.getvalue()
        except FileNotDecryptedError:
            return None
        except (DependencyError, NotImplementedError) as e:
            raise FatalDecryptionError(f"Decryption support unavailable: {e}") from e
        except (PdfReadError, PdfStreamError) as e:
            raise FatalDecryptionError(f"Document could not be decrypted: {e}") from e


class DecryptionEngine:
    """Tries candidates strictly in order and stops at the first success.

    The plaintext is written to a statement-scoped scratch file which is
    removed when the decrypt() context exits, however it exits.
    """

    def __init__(self, backend: Optional[DecryptionBackend] = None,
                 scratch_dir: Optional[str] = None):
        self.backend = backend or PypdfBackend()
        self.scratch_dir = scratch_dir

    @contextmanager
    def decrypt(self,
                data: bytes,
                candidates: List[PasswordCandidate],
                max_attempts: int) -> Iterator[DecryptedDocument]:
        """Decrypt a statement and yield the plaintext document

        Args:
            data: Encrypted PDF bytes
            candidates: Ordered password candidates
            max_attempts: Hard cap on tries

        Raises:
            DecryptionExhausted: If every allowed candidate failed
            FatalDecryptionError: If the input is corrupt or the tool is unusable
        """
        document = self._find_plaintext(data, candidates, max_attempts)
        scratch_path = None
        try:
            scratch_path = self._write_scratch(document.plaintext)
            document.scratch_path = scratch_path
            yield document
        finally:
            if scratch_path is not None:
                try:
                    os.remove(scratch_path)
                    logger.debug(f"Removed scratch file {scratch_path}")
                except FileNotFoundError:
                    pass

    def _find_plaintext(self, data: bytes, candidates: List[PasswordCandidate],
                        max_attempts: int) -> DecryptedDocument:
        if not self.backend.is_encrypted(data):
            logger.info("Statement is not encrypted")
            return DecryptedDocument(plaintext=data, password_used=None, attempt_count=0)

        if max_attempts < 1:
            raise DecryptionExhausted(0, "max_attempts must be positive")

        attempts = 0
        last_error = None
        for candidate in candidates[:max_attempts]:
            attempts += 1
            plaintext = self.backend.try_password(data, candidate.value)
            if plaintext is not None:
                logger.info(f"Decrypted on attempt {attempts} using {candidate.provenance} candidate")
                return DecryptedDocument(plaintext=plaintext, password_used=candidate.value,
                                         attempt_count=attempts)
            last_error = f"wrong password ({candidate.provenance})"
            logger.debug(f"Attempt {attempts} failed: {candidate.provenance}:{candidate.masked}")

        if not candidates:
            last_error = "no password candidates"
        raise DecryptionExhausted(attempts, last_error)

    def _write_scratch(self, plaintext: bytes) -> str:
        fd, path = tempfile.mkstemp(suffix='.pdf', prefix='stmt_', dir=self.scratch_dir)
        try:
            with os.fdopen(fd, 'wb') as handle:
                handle.write(plaintext)
        except Exception:
            os.remove(path)
            raise
        return path
