# btcodid/did/log.py
"""
Signed DID update logs.

A log is an append-only list of entries, one per document version,
stored as JSON Lines:

    {"versionId": "1-z...", "versionTime": "...",
     "parameters": {"method": "did:btco:1", "updateKeys": ["did:key:z6Mk..."],
                    "portable": false},
     "state": {...DID document...},
     "proof": [{...DataIntegrityProof...}]}

versionId is "<n>-<hash>", where hash covers the entry (without proof)
with versionId set to the previous entry's id. Each entry's proof signs
the state with challenge = versionId, using a key listed in the
updateKeys in force: the entry's own for the first entry, the previous
entry's afterwards.
"""

import copy
import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import InvalidInputError, VerificationFailedError
from ..multikey import encode_multibase
from ..proofs.eddsa import ProofOptions, ProofVerificationResult, create_proof, verify_proof
from ..proofs.loader import DocumentLoader, StaticDocumentLoader
from ..proofs.signer import Signer
from .document import iso_timestamp, validate_did_document

logger = logging.getLogger(__name__)

LOG_METHOD = "did:btco:1"


@dataclass
class LogParameters:
    method: str = LOG_METHOD
    update_keys: List[str] = field(default_factory=list)
    portable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "updateKeys": list(self.update_keys), "portable": self.portable}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogParameters":
        return cls(
            method=data.get("method", LOG_METHOD),
            update_keys=list(data.get("updateKeys", [])),
            portable=bool(data.get("portable", False)),
        )


@dataclass
class DidLogEntry:
    """One version of a DID document with its proofs."""
    version_id: str
    version_time: str
    parameters: LogParameters
    state: Dict[str, Any]
    proof: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def version_number(self) -> int:
        number, _, _ = self.version_id.partition("-")
        return int(number)

    def to_dict(self, include_proof: bool = True) -> Dict[str, Any]:
        data = {
            "versionId": self.version_id,
            "versionTime": self.version_time,
            "parameters": self.parameters.to_dict(),
            "state": copy.deepcopy(self.state),
        }
        if include_proof:
            data["proof"] = copy.deepcopy(self.proof)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DidLogEntry":
        return cls(
            version_id=data["versionId"],
            version_time=data["versionTime"],
            parameters=LogParameters.from_dict(data.get("parameters", {})),
            state=data["state"],
            proof=list(data.get("proof", [])),
        )


def entry_hash(entry: DidLogEntry, previous_version_id: str) -> str:
    """Multibase SHA-256 over the entry's sorted-key JSON, proof excluded."""
    data = entry.to_dict(include_proof=False)
    data["versionId"] = previous_version_id
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return encode_multibase(hashlib.sha256(canonical.encode("utf-8")).digest())


def _controller_did(verification_method: str) -> str:
    return verification_method.split("#", 1)[0]


def _sign_entry(entry: DidLogEntry, previous_version_id: str, signer: Signer,
                loader: DocumentLoader, version_time: str) -> DidLogEntry:
    entry.version_id = f"{entry.version_id}-{entry_hash(entry, previous_version_id)}"
    proof = create_proof(entry.state, ProofOptions(
        signer=signer,
        challenge=entry.version_id,
        created=version_time,
        document_loader=loader,
    ))
    entry.proof = [proof]
    return entry


def create_log(
    document: Dict[str, Any],
    signer: Signer,
    update_keys: Optional[Sequence[str]] = None,
    portable: bool = False,
    document_loader: Optional[DocumentLoader] = None,
    version_time: Optional[str] = None,
) -> List[DidLogEntry]:
    """
    Start a log with the document as version 1.

    Args:
        document: Valid DID document
        signer: Signs the entry; its DID must be among update_keys
        update_keys: DIDs allowed to sign the next update (defaults to
            the signer's DID)

    Raises:
        InvalidInputError: Invalid document or unauthorized signer
    """
    result = validate_did_document(document)
    if not result.is_valid:
        raise InvalidInputError(f"Invalid DID document: {'; '.join(result.errors)}")
    signer_did = _controller_did(signer.get_verification_method_id())
    keys = list(update_keys) if update_keys else [signer_did]
    if signer_did not in keys:
        raise InvalidInputError(f"Signer {signer_did} is not in updateKeys")

    version_time = version_time or iso_timestamp()
    entry = DidLogEntry(
        version_id="1",
        version_time=version_time,
        parameters=LogParameters(update_keys=keys, portable=portable),
        state=copy.deepcopy(document),
    )
    entry = _sign_entry(entry, "", signer, document_loader or StaticDocumentLoader(), version_time)
    logger.info(f"Created DID log for {document['id']} ({entry.version_id})")
    return [entry]


def update_log(
    log: Sequence[DidLogEntry],
    document: Dict[str, Any],
    signer: Signer,
    update_keys: Optional[Sequence[str]] = None,
    document_loader: Optional[DocumentLoader] = None,
    version_time: Optional[str] = None,
) -> List[DidLogEntry]:
    """
    Return a new log with the document appended as the next version.

    Raises:
        InvalidInputError: Empty log, deactivated DID, changed id on a
            non-portable DID, invalid document or unauthorized signer
    """
    if not log:
        raise InvalidInputError("Cannot update an empty DID log")
    last = log[-1]
    if last.state.get("deactivated"):
        raise InvalidInputError(f"{last.state.get('id')} is deactivated")
    if not last.parameters.portable and document.get("id") != last.state.get("id"):
        raise InvalidInputError("DID id cannot change in a non-portable log")
    result = validate_did_document(document)
    if not result.is_valid:
        raise InvalidInputError(f"Invalid DID document: {'; '.join(result.errors)}")
    signer_did = _controller_did(signer.get_verification_method_id())
    if signer_did not in last.parameters.update_keys:
        raise InvalidInputError(f"Signer {signer_did} is not an authorized update key")

    version_time = version_time or iso_timestamp()
    entry = DidLogEntry(
        version_id=str(last.version_number + 1),
        version_time=version_time,
        parameters=LogParameters(
            method=last.parameters.method,
            update_keys=list(update_keys) if update_keys else list(last.parameters.update_keys),
            portable=last.parameters.portable,
        ),
        state=copy.deepcopy(document),
    )
    entry = _sign_entry(entry, last.version_id, signer,
                        document_loader or StaticDocumentLoader(), version_time)
    logger.info(f"Appended {entry.version_id} to DID log for {document['id']}")
    return [copy.deepcopy(e) for e in log] + [entry]


def _verify_entry(entry: DidLogEntry, index: int, previous: Optional[DidLogEntry],
                  first: DidLogEntry, loader: DocumentLoader) -> List[str]:
    errors = []
    prefix = f"entry {index + 1}"
    if entry.version_number != index + 1:
        errors.append(f"{prefix}: expected version {index + 1}, got {entry.version_id}")
    previous_id = previous.version_id if previous else ""
    expected = f"{entry.version_number}-{entry_hash(entry, previous_id)}"
    if entry.version_id != expected:
        errors.append(f"{prefix}: versionId hash mismatch")
    if previous is not None:
        if entry.version_time < previous.version_time:
            errors.append(f"{prefix}: versionTime goes backwards")
        if not first.parameters.portable and entry.state.get("id") != first.state.get("id"):
            errors.append(f"{prefix}: DID id changed in a non-portable log")
    if errors:
        return errors

    authorized = (previous or entry).parameters.update_keys
    if not entry.proof:
        return [f"{prefix}: no proof"]
    for proof in entry.proof:
        method = proof.get("verificationMethod", "") if isinstance(proof, dict) else ""
        if _controller_did(method) not in authorized:
            errors.append(f"{prefix}: {method} is not an authorized update key")
            continue
        result = verify_proof(entry.state, proof, loader, challenge=entry.version_id)
        if result.verified:
            return []
        errors.extend(f"{prefix}: {e}" for e in result.errors)
    return errors


def verify_log(log: Sequence[DidLogEntry],
               document_loader: Optional[DocumentLoader] = None) -> ProofVerificationResult:
    """
    Check version chain, hashes and proofs of a whole log.

    Never raises.
    """
    if not log:
        return ProofVerificationResult(False, ["DID log is empty"])
    loader = document_loader or StaticDocumentLoader()
    errors: List[str] = []
    previous = None
    for index, entry in enumerate(log):
        try:
            errors.extend(_verify_entry(entry, index, previous, log[0], loader))
        except (KeyError, ValueError, TypeError) as e:
            errors.append(f"entry {index + 1}: malformed entry: {e}")
        previous = entry
    return ProofVerificationResult(not errors, errors)


def current_document(log: Sequence[DidLogEntry]) -> Optional[Dict[str, Any]]:
    """State of the last entry, or None for an empty log."""
    return copy.deepcopy(log[-1].state) if log else None


# -- JSON Lines -----------------------------------------------------------

def log_to_jsonl(log: Sequence[DidLogEntry]) -> str:
    return "".join(json.dumps(e.to_dict(), separators=(",", ":")) + "\n" for e in log)


def log_from_jsonl(text: str) -> List[DidLogEntry]:
    """
    Parse a JSON Lines log; blank lines are skipped.

    Raises:
        InvalidInputError: A line is not a JSON log entry
    """
    entries = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            entries.append(DidLogEntry.from_dict(json.loads(line)))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise InvalidInputError(f"Invalid DID log line {number}: {e}")
    return entries


def write_log(path: Union[Path, str], log: Sequence[DidLogEntry]):
    with open(path, "w") as f:
        f.write(log_to_jsonl(log))


def read_log(path: Union[Path, str]) -> List[DidLogEntry]:
    with open(path) as f:
        return log_from_jsonl(f.read())


class DidStore:
    """
    DID logs persisted to a directory.

    Structure:
        store_dir/
            <did with ':' as '_'>.jsonl    # One log per DID

    Writes are serialized per DID; reads never block.
    """

    def __init__(self, store_dir: Union[Path, str]):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._logs: Dict[str, List[DidLogEntry]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._load()

    def _load(self):
        for path in sorted(self.store_dir.glob("*.jsonl")):
            try:
                log = read_log(path)
            except InvalidInputError as e:
                logger.warning(f"Failed to load DID log {path.name}: {e}")
                continue
            if log:
                self._logs[log[0].state["id"]] = log

    def _log_path(self, did: str) -> Path:
        return self.store_dir / f"{did.replace(':', '_')}.jsonl"

    def lock_for(self, did: str) -> threading.Lock:
        """Per-DID write lock."""
        with self._locks_guard:
            lock = self._locks.get(did)
            if lock is None:
                lock = threading.Lock()
                self._locks[did] = lock
            return lock

    def put_log(self, log: Sequence[DidLogEntry], verify: bool = True,
                document_loader: Optional[DocumentLoader] = None) -> str:
        """
        Store a log, replacing any previous log for the same DID.

        A replacement must extend the stored log.

        Raises:
            InvalidInputError: Empty log or a replacement that rewrites history
            VerificationFailedError: verify is set and the log does not verify
        """
        if not log:
            raise InvalidInputError("Cannot store an empty DID log")
        did = log[0].state["id"]
        if verify:
            result = verify_log(log, document_loader)
            if not result.verified:
                raise VerificationFailedError(f"DID log for {did} does not verify: {'; '.join(result.errors)}")
        with self.lock_for(did):
            existing = self._logs.get(did, [])
            stored_ids = [e.version_id for e in existing]
            if [e.version_id for e in log[:len(existing)]] != stored_ids:
                raise InvalidInputError(f"DID log for {did} does not extend the stored log")
            write_log(self._log_path(did), log)
            self._logs[did] = [copy.deepcopy(e) for e in log]
        logger.debug(f"Stored {len(log)} log entries for {did}")
        return did

    def get_log(self, did: str) -> Optional[List[DidLogEntry]]:
        log = self._logs.get(did)
        return [copy.deepcopy(e) for e in log] if log is not None else None

    def get_document(self, did: str) -> Optional[Dict[str, Any]]:
        log = self._logs.get(did)
        return current_document(log) if log else None

    def query(self, field_name: str, value: Any) -> List[str]:
        """DIDs whose current document has field_name equal to value."""
        return [
            did for did, log in list(self._logs.items())
            if log[-1].state.get(field_name) == value
        ]

    def delete(self, did: str) -> bool:
        with self.lock_for(did):
            if did not in self._logs:
                return False
            self._log_path(did).unlink(missing_ok=True)
            del self._logs[did]
        return True

    def list(self) -> List[str]:
        return sorted(self._logs)

    def __len__(self) -> int:
        return len(self._logs)
