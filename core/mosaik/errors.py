"""Exception hierarchy for the workflow engine.

Structural errors are raised synchronously at the graph store boundary and
leave the graph unchanged. Provider failures are never raised: they travel
as stream events and end up as node errors in the run context.
"""


class MosaikError(Exception):
    """Base class for all engine errors."""


class StructuralError(MosaikError):
    """A graph mutation was rejected."""


class NotFoundError(StructuralError):
    """A node or edge referenced by a mutation does not exist."""


class CycleDetectedError(StructuralError):
    """Adding an edge would make the graph cyclic."""

    def __init__(self, source: str, target: str):
        super().__init__(f"Edge {source} -> {target} would create a cycle")
        self.source = source
        self.target = target


class DuplicateEdgeError(StructuralError):
    """An identical edge already exists."""


class InvalidTransitionError(MosaikError):
    """A node state change not allowed by the run state machine."""


class RunNotFoundError(MosaikError):
    """No run with the given id is known to the engine."""


class RunConflictError(MosaikError):
    """A run was triggered on nodes already taking part in an active run."""


class UnsupportedFileTypeError(MosaikError):
    """Only plain text and Markdown files can be imported or exported."""
