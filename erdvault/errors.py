class ERDVaultError(Exception):
    """Base class for every error raised by the diagram core."""


class NotFound(ERDVaultError, KeyError):
    def __str__(self):
        # KeyError.__str__ would repr() the message.
        return str(self.args[0]) if self.args else "not found"


class DecryptionFailed(ERDVaultError):
    pass


class InvalidBundle(ERDVaultError, ValueError):
    pass


class ConstraintViolation(ERDVaultError, ValueError):
    pass


class IOFailure(ERDVaultError, OSError):
    pass
