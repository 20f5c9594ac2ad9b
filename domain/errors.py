class EvaluatorError(Exception):
    """Base class for errors raised by the evaluator."""


class TerminalError(EvaluatorError):
    """An error that retrying cannot fix. Never retried by the retry policy
    nor re-enqueued by the job queue."""


class NotFoundError(TerminalError):
    pass


class MissingInputFiles(TerminalError):
    pass


class EmptyDocument(TerminalError):
    pass


class DocumentExtractionError(TerminalError):
    pass


class MalformedResponse(TerminalError):
    """The generative model returned text that is not the expected JSON."""


class IncompleteStageHistory(TerminalError):
    pass


class CollectionNotInitialized(TerminalError):
    pass


class ProviderNotConfigured(TerminalError):
    pass


class DocumentTypeConflict(TerminalError):
    """Same bytes already ingested under a different document type."""


class DuplicateDocument(TerminalError):
    """Content already ingested as another reference document."""
