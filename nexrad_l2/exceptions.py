from ._package_tools import Exporter

exporter = Exporter(globals())

@exporter.export
class DecodeError(Exception):
    """Base class for every failure to decode a Level II archive."""
    pass

@exporter.export
class ArchiveIOError(DecodeError, IOError):
    pass

@exporter.export
class GzipError(DecodeError):
    pass

@exporter.export
class Bzip2Error(DecodeError):
    pass

@exporter.export
class BadMagic(DecodeError):
    pass

@exporter.export
class Truncated(DecodeError):
    """Fewer bytes remain than a fixed-size field requires."""
    pass

@exporter.export
class BadMessageHeader(DecodeError):
    pass

@exporter.export
class BadBlockTag(DecodeError):
    pass

@exporter.export
class UnsupportedWordSize(DecodeError):
    pass

@exporter.export
class GateCountMismatch(DecodeError):
    pass

@exporter.export
class HeaderOnlyArchive(DecodeError):
    pass

@exporter.export
class BadElevationIndex(DecodeError):
    pass

@exporter.export
class PossiblyCorruptArchive(UserWarning):
    """Issued when the message stream does not end exactly at the buffer end."""
    pass
