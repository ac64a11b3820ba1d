from collections import namedtuple
import logging
from struct import Struct
import zlib

from .exceptions import GzipError, Truncated

log = logging.getLogger(__name__)
log.addHandler(logging.StreamHandler())
log.setLevel(logging.WARNING)

GZIP_MAGIC = b'\x1f\x8b'
INFLATE_CHUNK_SIZE = 1 << 20

def reverse_endian(value, width):
    """Swap the byte order of an unsigned integer ``width`` bytes wide.

    Applying it twice returns the original value; for one byte it is the identity.
    """
    return int.from_bytes(value.to_bytes(width, 'little'), 'big')

class NamedStruct(Struct):
    def __init__(self, info, prefmt = '', tuple_name = None):
        if tuple_name is None:
            tuple_name = 'NamedStruct'
        names, fmts = zip(*((i[0], i[1]) for i in info))
        self.converters = {}
        conv_off = 0
        for ind, i in enumerate(info):
            if not i[0]:
                conv_off += 1
            elif len(i) > 2:
                self.converters[ind - conv_off] = i[-1]
        self._tuple = namedtuple(tuple_name, ' '.join(n for n in names if n))
        super(NamedStruct, self).__init__(prefmt + ''.join(f for f in fmts if f))

    def _create(self, items):
        if self.converters:
            items = list(items)
            for ind, conv in self.converters.items():
                items[ind] = conv(items[ind])
        return self.make_tuple(*items)

    def make_tuple(self, *args, **kwargs):
        return self._tuple(*args, **kwargs)

    def unpack_from(self, buff, offset = 0):
        return self._create(super(NamedStruct, self).unpack_from(buff, offset))

class IOBuffer(object):
    """Read-only byte buffer with a bounds-checked read position.

    Sequential reads that would run past the end of the data either return
    fewer bytes (``read``) or raise `Truncated` without moving the position
    (every fixed-size read). Repositioning calls return False and leave the
    position untouched when the target lies outside ``[0, len(buffer)]``.
    Multi-byte numbers are stored big-endian.
    """
    _float_fmt = Struct('>f')

    def __init__(self, source):
        self._data = source if isinstance(source, bytes) else bytes(source)
        self._offset = 0

    def position(self):
        return self._offset

    def set_mark(self):
        return self._offset

    def offset_from(self, mark):
        return self._offset - mark

    def jump_to(self, mark, offset = 0):
        return self.seek(mark + offset)

    seek_relative = jump_to

    def seek(self, pos):
        if not 0 <= pos <= len(self._data):
            return False
        self._offset = pos
        return True

    def skip(self, num_bytes):
        return self.seek(self._offset + num_bytes)

    def rewind(self, num_bytes):
        return self.seek(self._offset - num_bytes)

    def remaining(self):
        return len(self._data) - self._offset

    def at_end(self):
        return self._offset >= len(self._data)

    def get_next(self, num_bytes = None):
        if num_bytes is None:
            return self._data[self._offset:]
        return self._data[self._offset:self._offset + num_bytes]

    def read(self, num_bytes = None):
        res = self.get_next(num_bytes)
        self._offset += len(res)
        return res

    def _check_remains(self, num_bytes):
        if self.remaining() < num_bytes:
            raise Truncated('Need {:d} bytes at offset {:d}, only {:d} remain'.format(num_bytes, self._offset, self.remaining()))

    def read_exact(self, num_bytes):
        self._check_remains(num_bytes)
        return self.read(num_bytes)

    def read_ascii(self, num_bytes):
        return self.read_exact(num_bytes).decode('ascii')

    def read_binary(self, num, item_type):
        if item_type[0] not in ('@', '=', '<', '>', '!'):
            order = '>'
        else:
            order = item_type[0]
            item_type = item_type[1:]
        return list(self.read_struct(Struct(order + '{:d}'.format(int(num)) + item_type)))

    def read_struct(self, struct_class):
        self._check_remains(struct_class.size)
        struct = struct_class.unpack_from(self._data, self._offset)
        self._offset += struct_class.size
        return struct

    def read_integral(self, width):
        raw = self.read_exact(width)
        return reverse_endian(int.from_bytes(raw, 'little'), width)

    def read_float(self):
        return self._float_fmt.unpack(self.read_exact(4))[0]

    def dump_to_file(self, path):
        with open(path, 'wb') as fobj:
            fobj.write(self._data)

    def __len__(self):
        return len(self._data)

def _inflate_chunks(data, chunk_size = INFLATE_CHUNK_SIZE):
    while data:
        decomp = zlib.decompressobj(16 + zlib.MAX_WBITS)
        pending = data
        while not decomp.eof:
            try:
                chunk = decomp.decompress(pending, chunk_size)
            except zlib.error as e:
                raise GzipError('Malformed gzip stream: {}'.format(e)) from e
            if chunk:
                yield chunk
            pending = decomp.unconsumed_tail
            if not chunk and not pending and not decomp.eof:
                raise GzipError('gzip stream ended before its end-of-stream marker')
        data = decomp.unused_data
        if data and data[:2] != GZIP_MAGIC:
            log.debug('Ignoring %d bytes trailing the gzip stream', len(data))
            break

def gzip_decompress_all_members(data, chunk_size = INFLATE_CHUNK_SIZE):
    return b''.join(_inflate_chunks(bytes(data), chunk_size))
