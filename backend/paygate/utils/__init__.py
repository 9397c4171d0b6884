from paygate.utils.hashing import generate_hash, generate_chain_hash
from paygate.utils.validators import validate_solana_address, validate_subject_id
from paygate.utils.logger import setup_logging

__all__ = [
    "generate_hash", "generate_chain_hash",
    "validate_solana_address", "validate_subject_id",
    "setup_logging",
]
