"""
OTP Module
==========
Code generation, hashing and the OTP lifecycle engine.
"""

from .engine import OTPEngine
from .generator import CodeGenerator
from .hashing import generate_salt, hash_code, hash_token, verify_code
from .locks import KeyedLock
from .results import GenerationResult, StatusResult, UserProfile, ValidationResult

__all__ = [
    "OTPEngine",
    "CodeGenerator",
    "KeyedLock",
    "GenerationResult",
    "ValidationResult",
    "StatusResult",
    "UserProfile",
    "generate_salt",
    "hash_code",
    "verify_code",
    "hash_token",
]
