"""Exceptions raised by the note graph engine.

Malformed links (ParseSkip) and ambiguous titles (ResolutionCollision) are
diagnostics, not exceptions; see core.model. A dangling reference is a graph
state (ResolvedLink.dangling), not an error.
"""


class MarginaliaError(Exception):
    """Base class for all engine errors."""


class StoreIOFailure(MarginaliaError):
    """The note store could not read, write or delete a note."""

    def __init__(self, op: str, note_id: str, cause: BaseException | None = None):
        self.op = op
        self.note_id = note_id
        self.cause = cause
        msg = f"{op} failed for note {note_id}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class NoteNotFound(MarginaliaError):
    def __init__(self, note_id: str):
        self.note_id = note_id
        super().__init__(f"Note {note_id} not found")


class ConfigError(MarginaliaError):
    """Invalid value in marginalia.toml."""


class TemplateError(MarginaliaError):
    """A template cannot be saved, changed or removed."""


class TemplateNotFound(TemplateError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template '{template_id}' not found")
