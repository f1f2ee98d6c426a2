# SPDX-License-Identifier: LGPL-2.1-or-later


class BootimgError(Exception):
    """Base class for every failure a build step can report."""


class ValidationError(BootimgError):
    """Conflicting or invalid run-mode options, unknown step names or indices."""


class ResumeError(BootimgError):
    """A run could not be resumed from the work directory."""


class FileIOError(BootimgError):
    """Creating, reading or writing a file or directory failed."""


class SerializationError(BootimgError):
    """The checkpoint could not be encoded or decoded."""


class GeometryError(BootimgError):
    """Overlapping structures, writes outside of an image, missing layout."""


class ExternalToolError(BootimgError):
    """An external tool failed or a binary it needs could not be found."""


class FilesystemBuildError(BootimgError):
    pass


class HookError(BootimgError):
    pass


class CleanupError(FileIOError):
    pass


class CheckpointNotFoundError(ResumeError):
    pass


class CheckpointReadError(ResumeError, FileIOError):
    pass


class CheckpointCorruptError(ResumeError, SerializationError):
    pass
