from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
import bz2
import logging
import os
import re
import warnings

import numpy as np

from ._cbook import is_string_like
from ._package_tools import Exporter
from ._tools import GZIP_MAGIC, IOBuffer, NamedStruct, gzip_decompress_all_members
from .exceptions import (ArchiveIOError, BadBlockTag, BadElevationIndex, BadMagic, BadMessageHeader, Bzip2Error,
                         GateCountMismatch, HeaderOnlyArchive, PossiblyCorruptArchive, Truncated, UnsupportedWordSize)
from .model import (BlockPointers, MAX_ELEVATION_INDEX, METADATA_SIZE, MomentData, MomentType, Radial, VolumeHeader,
                    VolumeModel)

exporter = Exporter(globals())

log = logging.getLogger(__name__)
log.addHandler(logging.StreamHandler())
log.setLevel(logging.WARNING)

VOLUME_MAGIC = 'AR2V00'
BZIP2_MAGIC = re.compile(b'BZh[1-9]')
BLOCK_LENGTH_SIZE = 4
# "BZh9" + end-of-stream marker + CRC: nothing shorter is a bzip2 stream
MIN_BZIP2_STREAM = 14
BUNZIP_CHUNK_SIZE = 1000000

CTM_PAD = 12
OVERSIZE_MESSAGE = 0xFFFF
MAX_DATA_BLOCKS = 10

def scaler(scale):
    def inner(val):
        return val * scale
    return inner

def ascii_int(val):
    return int(val.decode('ascii'))

Segment = namedtuple('Segment', 'is_block start end')

@exporter.export
def scan_bzip_blocks(data):
    """Split a buffer into literal runs and embedded bzip2 blocks.

    Each block is announced by ``BZh[1-9]`` and preceded by a 4-byte big-endian
    signed length giving the compressed size (the sign only marks the last
    block). Length prefixes are not part of either kind of segment. A match
    without a plausible length in front of it stays in the literal run.
    """
    segments = []
    literal_start = 0
    pos = 0
    while True:
        match = BZIP2_MAGIC.search(data, pos)
        if match is None:
            break

        start = match.start()
        size_start = start - BLOCK_LENGTH_SIZE
        if size_start < literal_start:
            log.warning('bzip2 magic at offset %d has no room for a length prefix; copied as literal bytes', start)
            pos = start + 1
            continue

        size = abs(int.from_bytes(data[size_start:start], 'big', signed = True))
        if size < MIN_BZIP2_STREAM:
            log.warning('bzip2 magic at offset %d preceded by implausible length %d; copied as literal bytes', start, size)
            pos = start + 1
            continue
        if start + size > len(data):
            raise Bzip2Error('bzip2 block at offset {:d} declares {:d} bytes, only {:d} remain'.format(start, size, len(data) - start))

        if size_start > literal_start:
            segments.append(Segment(False, literal_start, size_start))
        segments.append(Segment(True, start, start + size))
        literal_start = pos = start + size

    if literal_start < len(data):
        segments.append(Segment(False, literal_start, len(data)))
    return segments

def _bunzip_chunks(block, chunk_size = BUNZIP_CHUNK_SIZE):
    decomp = bz2.BZ2Decompressor()
    pending = block
    while not decomp.eof:
        try:
            chunk = decomp.decompress(pending, chunk_size)
        except (OSError, ValueError) as e:
            raise Bzip2Error('Malformed bzip2 block: {}'.format(e)) from e
        pending = b''
        if chunk:
            yield chunk
        elif decomp.needs_input and not decomp.eof:
            raise Bzip2Error('bzip2 block ends before its end-of-stream marker')

    if decomp.unused_data:
        log.warning('bzip2 block length overstates the stream by %d bytes', len(decomp.unused_data))

def bunzip_block(block):
    return b''.join(_bunzip_chunks(block))

@exporter.export
def splice_bzip_blocks(data, segments, workers = None):
    view = memoryview(data)

    def expand(seg):
        if seg.is_block:
            out = bunzip_block(view[seg.start:seg.end])
            log.debug('Spliced bzip2 block at offset %d: %d -> %d bytes', seg.start, seg.end - seg.start, len(out))
            return out
        return view[seg.start:seg.end]

    if workers is not None and workers > 1:
        with ThreadPoolExecutor(max_workers = workers) as pool:
            pieces = list(pool.map(expand, segments))
    else:
        pieces = [expand(seg) for seg in segments]

    return b''.join(pieces)

@exporter.export
def bzip_blocks_decompress_all(data, workers = None):
    return splice_bzip_blocks(data, scan_bzip_blocks(data), workers)

def _read_source(source):
    try:
        if is_string_like(source):
            with open(source, 'rb') as fobj:
                return fobj.read()
        return source.read()
    except OSError as e:
        raise ArchiveIOError('Unable to read archive {}: {}'.format(source, e)) from e

def _decompress(source, try_gzip = True, try_bzip2_blocks = True, workers = None):
    data = _read_source(source)

    if try_gzip and data[:2] == GZIP_MAGIC:
        log.debug('gzip envelope detected, inflating %d bytes', len(data))
        data = gzip_decompress_all_members(data)

    if not try_bzip2_blocks:
        return data, 0

    segments = scan_bzip_blocks(data)
    return splice_bzip_blocks(data, segments, workers), sum(seg.is_block for seg in segments)

@exporter.export
def decompress_archive(source, try_gzip = True, try_bzip2_blocks = True, workers = None):
    """Recover the contiguous Level II byte stream from an archive file.

    ``source`` is a path or a binary file object. A gzip envelope is inflated
    when ``try_gzip`` is set and the data starts with the gzip magic; embedded
    bzip2 blocks are then spliced back in place when ``try_bzip2_blocks`` is set.
    """
    return _decompress(source, try_gzip, try_bzip2_blocks, workers)[0]

DecodeOptions = namedtuple('DecodeOptions', 'gzip bzip2 dump_intermediate dump_path workers', defaults = (True, True, False, None, None))
exporter.export(DecodeOptions)

@exporter.export
class L2D(object):
    vol_hdr_fmt = NamedStruct([
        ('version',   '2s', ascii_int),
        (None,        'x'),
        ('extension', '3s', ascii_int),
        ('date',      'L'),
        ('time',      'L'),
        ('site',      '4s', lambda s: s.decode('ascii', 'replace'))
    ], '>', 'VolHdr')

    msg_hdr_fmt = NamedStruct([
        ('size_hw',      'H'),
        ('channel',      'B'),
        ('msg_type',     'B'),
        (None,           '8x'),
        ('num_segments', 'H'),
        ('segment_num',  'H')
    ], '>', 'MsgHdr')

    msg31_fmt = NamedStruct([
        (None,            '10x'),
        ('az_num',        'H'),
        ('az_angle',      'f'),
        (None,            '2x'),
        ('radial_length', 'H'),
        (None,            '2x'),
        ('elev_num',      'B'),
        (None,            'x'),
        ('elev_angle',    'f'),
        (None,            '2x'),
        ('num_blocks',    'H')
    ], '>', 'Msg31Hdr')

    moment_fmt = NamedStruct([
        (None,            '4x'),
        ('num_gates',     'H'),
        ('first_gate',    'h', scaler(0.001)),
        ('gate_interval', 'H', scaler(0.001)),
        ('tover',         'h', scaler(0.1)),
        ('snr_threshold', 'h', scaler(0.125)),
        ('control_flags', 'B'),
        ('word_size',     'B'),
        ('scale',         'f'),
        ('offset',        'f')
    ], '>', 'GenericMomentHdr')

    def __init__(self, filename, options = None):
        if options is None:
            options = DecodeOptions()

        if is_string_like(filename):
            source_name = os.fsdecode(filename)
        else:
            source_name = getattr(filename, 'name', None)
            if not isinstance(source_name, str):
                source_name = None
        self.filename = source_name or 'No Filename'

        data, num_blocks = _decompress(filename, options.gzip, options.bzip2, options.workers)
        self._buffer = IOBuffer(data)

        if options.dump_intermediate:
            dump_path = options.dump_path
            if dump_path is None and source_name:
                dump_path = source_name + '.decompressed'
            if dump_path is None:
                log.warning('No dump_path given for an unnamed source; decompressed stream not written')
            else:
                self._buffer.dump_to_file(dump_path)
                log.info('%s: wrote %d decompressed bytes to %s', self.filename, len(self._buffer), dump_path)

        self.volume = VolumeModel(self._read_volume_header(), self._read_metadata())
        self.volume.num_blocks = num_blocks

        if self._buffer.at_end():
            raise HeaderOnlyArchive('{}: archive ends right after the metadata record'.format(self.filename))

        self._read_messages()
        log.debug('%s: message counts %s', self.filename, dict(self.volume.message_counts))

    def _read_volume_header(self):
        try:
            magic = self._buffer.read_ascii(len(VOLUME_MAGIC))
        except UnicodeDecodeError:
            magic = None
        if magic != VOLUME_MAGIC:
            raise BadMagic('{}: expected volume header {!r}, found {!r}'.format(self.filename, VOLUME_MAGIC, magic))

        try:
            hdr = self._buffer.read_struct(self.vol_hdr_fmt)
        except ValueError as e:
            raise BadMagic('{}: malformed version/extension field in volume header'.format(self.filename)) from e
        return VolumeHeader(version = hdr.version, extension_num = hdr.extension, date = hdr.date, time = hdr.time, site = hdr.site)

    def _read_metadata(self):
        metadata = self._buffer.read(METADATA_SIZE)
        if len(metadata) != METADATA_SIZE:
            raise Truncated('{}: archive ends inside metadata record ({:d} of {:d} bytes)'.format(self.filename, len(metadata), METADATA_SIZE))
        return metadata

    def _read_messages(self):
        while not self._buffer.at_end():
            if not self._buffer.skip(CTM_PAD):
                break

            msg_start = self._buffer.set_mark()
            try:
                hdr = self._buffer.read_struct(self.msg_hdr_fmt)
            except Truncated as e:
                raise BadMessageHeader('{}: message header at offset {:d} runs past the end of the archive'.format(self.filename, msg_start)) from e

            if hdr.size_hw == OVERSIZE_MESSAGE:
                size_bytes = (hdr.num_segments << 16) | hdr.segment_num
            else:
                size_bytes = hdr.size_hw * 2
                if hdr.num_segments != 1 or hdr.segment_num != 1:
                    log.warning('%s: message type %d at offset %d is segment %d of %d; segments are not reassembled', self.filename, hdr.msg_type, msg_start, hdr.segment_num, hdr.num_segments)

            if size_bytes < self.msg_hdr_fmt.size:
                raise BadMessageHeader('{}: message at offset {:d} claims {:d} bytes, less than its own header'.format(self.filename, msg_start, size_bytes))

            self.volume.message_counts[hdr.msg_type] += 1
            decoder = self.msg_decoders.get(hdr.msg_type)
            if decoder is not None:
                decoder(self, hdr)

            if not self._buffer.jump_to(msg_start, size_bytes):
                log.debug('%s: message at offset %d ends past the archive end', self.filename, msg_start)
                break

        if not self._buffer.at_end():
            self.volume.possibly_corrupt = True
            log.warning('%s: %d bytes left after the last complete message', self.filename, self._buffer.remaining())
            warnings.warn('{}: message stream stopped {:d} bytes before the end of the archive'.format(self.filename, self._buffer.remaining()), PossiblyCorruptArchive)

    def _decode_msg31(self, msg_hdr):
        header_base = self._buffer.set_mark()
        hdr = self._buffer.read_struct(self.msg31_fmt)
        if hdr.elev_num > MAX_ELEVATION_INDEX:
            raise BadElevationIndex('{}: elevation index {:d} at offset {:d} exceeds {:d}'.format(self.filename, hdr.elev_num, header_base, MAX_ELEVATION_INDEX))

        ptrs = self._buffer.read_binary(min(hdr.num_blocks, MAX_DATA_BLOCKS), '>L')
        pointers = BlockPointers(*ptrs[:len(BlockPointers._fields)])

        elev = self.volume.get_or_create_elevation(hdr.elev_num)
        elev.angle = hdr.elev_angle

        radial = Radial(az_num = hdr.az_num, az_angle = hdr.az_angle, elev_num = hdr.elev_num, elev_angle = hdr.elev_angle, radial_length = hdr.radial_length, num_blocks = hdr.num_blocks, pointers = pointers)
        elev.radials.append(radial)

        if pointers.ref:
            radial.moments[MomentType.REF] = self._decode_moment(header_base, pointers.ref, MomentType.REF)

    def _decode_moment(self, header_base, ptr, kind):
        if not self._buffer.jump_to(header_base, ptr):
            raise Truncated('{}: {} block pointer {:d} from offset {:d} lies past the end of the archive'.format(self.filename, kind.name, ptr, header_base))

        tag = self._buffer.read_exact(4)
        if tag != kind.tag:
            raise BadBlockTag('{}: expected {!r} block at offset {:d}, found {!r}'.format(self.filename, kind.tag, header_base + ptr, tag))

        hdr = self._buffer.read_struct(self.moment_fmt)
        if hdr.word_size != 8:
            raise UnsupportedWordSize('{}: {} block at offset {:d} uses {:d}-bit gates; only 8-bit gates are supported'.format(self.filename, kind.name, header_base + ptr, hdr.word_size))

        raw = np.frombuffer(self._buffer.read(hdr.num_gates), dtype = '>u1')
        if len(raw) != hdr.num_gates:
            raise GateCountMismatch('{}: {} block at offset {:d} holds {:d} gates, header says {:d}'.format(self.filename, kind.name, header_base + ptr, len(raw), hdr.num_gates))

        return MomentData(kind, num_gates = hdr.num_gates, first_gate = hdr.first_gate, gate_interval = hdr.gate_interval, snr_threshold = hdr.snr_threshold, word_size = hdr.word_size, scale = hdr.scale, offset = hdr.offset, raw = raw, tover = hdr.tover, control_flags = hdr.control_flags)

    msg_decoders = {
        31: _decode_msg31
    }

    def __repr__(self):
        return '{}: {!r}'.format(self.filename, self.volume)

@exporter.export
def decode_archive(path, options = None):
    return L2D(path, options).volume
