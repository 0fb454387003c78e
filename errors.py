"""
Error taxonomy shared by the ingestion, query and API layers.

  FetchFailure  remote endpoint unreachable, non-2xx status, or timed out
  ParseFailure  archive unreadable, required file missing, malformed field
  NotFound      a query referenced an unknown stop or route id

There is no "no feasible trip" error: an empty options list is a valid
answer.
"""


class TransitError(Exception):
    """Base class for errors surfaced to callers of the query layer."""


class FetchFailure(TransitError):
    pass


class ParseFailure(TransitError):
    pass


class NotFound(TransitError):
    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} '{identifier}' not found.")
