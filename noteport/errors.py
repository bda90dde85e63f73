"""Exception hierarchy for noteport."""


class NoteportError(Exception):
    """Base error for the project."""


class SourceInvalidError(NoteportError):
    """The scanned source cannot be imported."""


class RowSchemaError(NoteportError):
    """A source row is missing a required field."""


class DocumentDecodeError(NoteportError):
    """A note document could not be decoded."""


class AssetCopyError(NoteportError):
    """Copying an asset into the import package failed."""

    def __init__(self, source_path, dest_path, reason):
        self.source_path = str(source_path)
        self.dest_path = str(dest_path)
        self.reason = str(reason)
        super().__init__(f"Failed to copy {self.source_path} to {self.dest_path}: {self.reason}")


class AssetDownloadError(NoteportError):
    """A remote asset could not be downloaded."""


class BackupError(NoteportError):
    pass


class PersistError(NoteportError):
    pass


class RestoreError(NoteportError):
    pass
