"""
Code Generator
==============
Cryptographically random OTP codes of configurable length and alphabet.
"""

import secrets
from typing import Tuple

from ..config import DEFAULT_ALPHABET
from .hashing import generate_salt, hash_code


class CodeGenerator:
    """
    Draws codes uniformly from an alphabet.

    ``secrets.choice`` picks each character through ``randbelow``, which
    rejects and resamples instead of reducing modulo the alphabet size, so
    every character is unbiased whatever the alphabet length.
    """

    def __init__(self, length: int = 6, alphabet: str = DEFAULT_ALPHABET):
        if length <= 0:
            raise ValueError("length must be positive")
        if len(alphabet) < 2:
            raise ValueError("alphabet needs at least two characters")
        self.length = length
        self.alphabet = alphabet

    def generate(self) -> str:
        if self.alphabet == DEFAULT_ALPHABET:
            return str(secrets.randbelow(10 ** self.length)).zfill(self.length)
        return "".join(secrets.choice(self.alphabet) for _ in range(self.length))

    def generate_hashed(self) -> Tuple[str, str, str]:
        """
        Generate a code together with its salt and digest.

        Returns:
            Tuple of (code, salt, code_hash)
        """
        code = self.generate()
        salt = generate_salt()
        return code, salt, hash_code(code, salt)
