from .secrets import IssuedSecret, SecretAlreadyIssued, SecretInfo, SecretVault

__all__ = ["IssuedSecret", "SecretAlreadyIssued", "SecretInfo", "SecretVault"]
