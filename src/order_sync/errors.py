class RemoteStoreError(Exception):
    """The remote order store could not be reached or rejected a statement."""


class FetchError(RemoteStoreError):
    """A page read failed. Cached data is left as it was."""
