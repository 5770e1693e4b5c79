"""
Database Migration System

Versioned migrations applied in order and recorded in schema_migrations.
Each migration is a Python callable run against the storage gateway inside
one storage transaction.
"""

from typing import Callable, List, Optional, Dict, Any
from datetime import datetime, timezone
import hashlib
import logging

from .encryption import CryptoService
from .errors import BankError
from .storage import StorageInterface
from .validation import normalize_ssn, validate_ssn


logger = logging.getLogger(__name__)


class Migration:
    """Represents a single schema or data migration"""

    def __init__(self, version: int, name: str, apply: Callable[[], None]):
        self.version = version
        self.name = name
        self.apply = apply
        self.applied_at: Optional[datetime] = None

    @property
    def checksum(self) -> str:
        return hashlib.md5(f"{self.version}:{self.name}".encode()).hexdigest()

    def __str__(self) -> str:
        return f"Migration v{self.version:03d}: {self.name}"

    def __repr__(self) -> str:
        return f"Migration(version={self.version}, name='{self.name}')"


class MigrationManager:
    """Manages database migrations"""

    def __init__(self, storage: StorageInterface, crypto: CryptoService):
        self.storage = storage
        self.crypto = crypto
        self.migrations: List[Migration] = []
        self._migration_table = "schema_migrations"
        self._init_migrations()
        # Tracking table must exist before versions can be read
        self.storage.ensure_schema()

    def _init_migrations(self) -> None:
        """Register built-in migrations"""

        # v001: users, accounts, transactions, sessions
        self.add_migration(1, "Create core tables", self.storage.ensure_schema)

        # v002: blind index column for SSN uniqueness
        self.add_migration(2, "Add users.ssn_hash", self._add_ssn_hash_column)

        # v003: encrypt SSNs stored before field encryption existed
        self.add_migration(3, "Encrypt legacy SSNs", self._encrypt_legacy_ssns)

    def add_migration(self, version: int, name: str, apply: Callable[[], None]) -> None:
        """Add a migration to the manager"""
        self.migrations.append(Migration(version, name, apply))
        # Keep migrations sorted by version
        self.migrations.sort(key=lambda m: m.version)

    def get_applied_migrations(self) -> List[Dict[str, Any]]:
        return self.storage.find(self._migration_table, order_by="version")

    def get_current_version(self) -> int:
        """Get the current database version"""
        applied = self.get_applied_migrations()
        return max((m["version"] for m in applied), default=0)

    def get_pending_migrations(self, target_version: Optional[int] = None) -> List[Migration]:
        """Get list of pending migrations"""
        current_version = self.get_current_version()
        max_version = target_version or max((m.version for m in self.migrations), default=0)

        return [m for m in self.migrations if current_version < m.version <= max_version]

    def migrate_up(self, target_version: Optional[int] = None) -> List[Migration]:
        """Apply pending migrations up to target version"""
        pending = self.get_pending_migrations(target_version)
        applied = []

        if not pending:
            logger.info("No pending migrations to apply")
            return applied

        logger.info(f"Applying {len(pending)} pending migrations")

        for migration in pending:
            try:
                logger.info(f"Applying {migration}")

                with self.storage.atomic():
                    migration.apply()

                    now = datetime.now(timezone.utc)
                    self.storage.insert(self._migration_table, {
                        "version": migration.version,
                        "name": migration.name,
                        "checksum": migration.checksum,
                        "applied_at": now,
                    })

                migration.applied_at = now
                applied.append(migration)
                logger.info(f"Successfully applied {migration}")

            except Exception as e:
                logger.error(f"Failed to apply {migration}: {e}")
                raise RuntimeError(f"Migration failed: {migration}") from e

        logger.info(f"Successfully applied {len(applied)} migrations")
        return applied

    def validate_migrations(self) -> bool:
        """Validate that applied migrations match expected checksums"""
        for record in self.get_applied_migrations():
            version = record["version"]
            migration = next((m for m in self.migrations if m.version == version), None)
            if not migration:
                logger.warning(f"Applied migration v{version} not found in definitions")
                continue

            if record["checksum"] != migration.checksum:
                logger.error(f"Checksum mismatch for v{version}: expected {migration.checksum}, "
                             f"got {record['checksum']}")
                return False

        return True

    def get_migration_status(self) -> Dict[str, Any]:
        """Get detailed migration status"""
        pending = self.get_pending_migrations()

        return {
            "current_version": self.get_current_version(),
            "latest_version": max((m.version for m in self.migrations), default=0),
            "pending_count": len(pending),
            "applied_count": len(self.get_applied_migrations()),
            "pending_migrations": [
                {"version": m.version, "name": m.name} for m in pending
            ],
            "needs_migration": len(pending) > 0
        }

    # Built-in migrations

    def _add_ssn_hash_column(self) -> None:
        if self.storage.has_column("users", "ssn_hash"):
            return
        self.storage.add_column("users", "ssn_hash", "TEXT", unique=True)
        logger.info("Added users.ssn_hash column")

    def _encrypt_legacy_ssns(self) -> None:
        """
        Encrypt plaintext SSNs and fill in their blind index.

        Rows that fail (bad legacy data, duplicate SSNs) are logged and left
        for manual repair; they do not block the rest.
        """
        rows = self.storage.find("users", {"ssn_hash": None})
        migrated = 0

        for row in rows:
            try:
                self.storage.update("users", row["id"], self._protect_ssn(row["ssn"]))
                migrated += 1
            except BankError as e:
                logger.error(f"Could not migrate SSN for user {row['id']}: {e.message}")

        if rows:
            logger.info(f"Encrypted SSNs for {migrated} of {len(rows)} users")

    def _protect_ssn(self, stored: str) -> Dict[str, str]:
        """Encrypted envelope and blind index for a stored SSN value"""
        if validate_ssn(stored).valid:
            plaintext = normalize_ssn(stored)
            return {"ssn": self.crypto.encrypt(plaintext), "ssn_hash": self.crypto.hash(plaintext)}

        # Already encrypted, only the index is missing; failures propagate
        plaintext = self.crypto.decrypt(stored)
        return {"ssn": stored, "ssn_hash": self.crypto.hash(plaintext)}
