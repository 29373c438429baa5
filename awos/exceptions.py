"""
Exceptions for reading storage.
"""


class StoreError(RuntimeError):
    """A reading store could not complete an operation."""

    pass
