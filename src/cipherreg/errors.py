"""
Error taxonomy for cipherreg

Registry errors are raised synchronously by the registry and abort the whole
operation. Decryption errors only surface from the delegated decryption
protocol and never touch registry state.
"""


class RegistryError(Exception):
    """Base exception for registry errors"""
    pass


class InvalidInputError(RegistryError):
    """Raised for empty or out-of-domain arguments"""
    pass


class NotRegisteredError(RegistryError):
    """Raised when an operation requires an existing record"""
    pass


class NotAuthorizedError(RegistryError):
    """Raised when the caller lacks the required role"""
    pass


class InvalidCiphertextError(RegistryError):
    """Raised when the encryption backend rejects an input proof"""
    pass


class DecryptionError(Exception):
    """Base exception for delegated decryption errors"""
    pass


class UnauthorizedError(DecryptionError):
    """Raised when the signer may not decrypt a handle"""
    pass


class ExpiredError(DecryptionError):
    """Raised when a credential is used outside its validity window"""
    pass


class InvalidSignatureError(DecryptionError):
    """Raised when a credential signature does not verify"""
    pass
