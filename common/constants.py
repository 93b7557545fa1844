"""Project-wide constants (record capacity, snapshot version, defaults)."""

RECORD_CAPACITY_BYTES: int = 90_000  # largest payload a single ledger record carries
SNAPSHOT_VERSION: str = "1.0"

DEFAULT_RETENTION_DAYS: int = 30
DEFAULT_MAX_FILE_SIZE_BYTES: int = 100 * 1024 * 1024  # 100 MiB
DEFAULT_KDF_ROUNDS: int = 50
DEFAULT_SWEEP_INTERVAL_SECONDS: int = 5 * 60
DEFAULT_SNAPSHOT_PATH: str = "./data/catalog.json"

SALT_SIZE_BYTES: int = 16
NONCE_SIZE_BYTES: int = 12
KEY_SIZE_BYTES: int = 32

ENCRYPTION_ALGORITHM: str = "AES-256-GCM"
KEY_DERIVATION: str = "bcrypt-pbkdf"

PERMISSIONS = ("read", "write", "delete", "share")
RULE_KINDS = ("auto-renewal", "access-control", "collaborative-ownership", "conditional-access")
CONDITION_KINDS = ("time-based", "payment-based", "signature-based", "usage-based")
