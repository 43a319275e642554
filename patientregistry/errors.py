class RegistryError(Exception):
    pass


class ValidationError(RegistryError):
    """One or more fields failed validation.

    :param errors  dict of field name to message
    """

    def __init__(self, errors):
        self.errors = dict(errors)
        detail = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(f"Invalid fields: {detail}")


class StorageFailure(RegistryError):
    """Reading or writing durable storage failed."""
