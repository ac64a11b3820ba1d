"""
Pytest configuration and fixtures.

Archives are assembled in memory with the same layout the radar writes:
volume header, metadata record, then 12-byte padded messages, optionally
split into length-prefixed bzip2 blocks and wrapped in gzip.
"""
import bz2
import gzip
import os

import pytest
import struct

from nexrad_l2._cbook import get_test_data
from nexrad_l2.model import METADATA_SIZE

SAMPLE_ARCHIVE = 'KDIX20240517_025206_V06'


class ArchiveBuilder(object):
    # 2024-05-17 02:52:06 UTC
    date = 19861
    time = 10326000

    vol_block = b'RVOL' + bytes(40)
    elv_block = b'RELV' + bytes(8)
    rad_block = b'RRAD' + bytes(24)

    @classmethod
    def volume_header(cls, magic=b'AR2V00', version=b'06', extension=b'050', site=b'KDIX'):
        return magic + version + b'.' + extension + struct.pack('>LL', cls.date, cls.time) + site

    @staticmethod
    def metadata():
        return bytes(METADATA_SIZE)

    @staticmethod
    def ref_block(gates, scale=2., offset=66., word_size=8, tag=b'DREF', num_gates=None,
                  first_gate=2125, interval=250, tover=50, snr=16):
        if num_gates is None:
            num_gates = len(gates)
        return struct.pack('>4sIHhHhhBBff', tag, 0, num_gates, first_gate, interval, tover, snr,
                           0, word_size, scale, offset) + bytes(gates)

    @classmethod
    def msg31_payload(cls, gates=(0, 1, 2, 66, 255), az_num=1, az_angle=0.5, elev_num=1, elev_angle=0.5,
                      extra_pointers=(), ref=None, ref_pointer=None, **ref_kwargs):
        if ref is None:
            ref = cls.ref_block(gates, **ref_kwargs)

        const_blocks = [cls.vol_block, cls.elv_block, cls.rad_block]
        num_blocks = 4 + len(extra_pointers)
        pos = 32 + 4 * num_blocks
        pointers = []
        for block in const_blocks:
            pointers.append(pos)
            pos += len(block)
        pointers.append(pos if ref_pointer is None else ref_pointer)
        pointers.extend(extra_pointers)

        hdr = struct.pack('>4sLHHfBBHBBBBfBBH', b'KDIX', cls.time, cls.date, az_num, az_angle, 0, 0,
                          460, 0, 1, elev_num, 0, elev_angle, 0, 0, num_blocks)
        return hdr + struct.pack('>{:d}L'.format(num_blocks), *pointers) + b''.join(const_blocks) + ref

    @staticmethod
    def message(payload, msg_type=31, pad=0, size_hw=None, segments=(1, 1), oversize=False):
        payload = payload + bytes(pad)
        if len(payload) % 2:
            payload += b'\x00'
        size_bytes = 16 + len(payload)
        if oversize:
            size_hw = 0xFFFF
            segments = (size_bytes >> 16, size_bytes & 0xFFFF)
        elif size_hw is None:
            size_hw = size_bytes // 2
        hdr = struct.pack('>HBBHHLHH', size_hw, 8, msg_type, 0, ArchiveBuilder.date, ArchiveBuilder.time, *segments)
        return bytes(12) + hdr + payload

    @classmethod
    def archive(cls, messages, header=None):
        if header is None:
            header = cls.volume_header()
        return header + cls.metadata() + b''.join(messages)

    @staticmethod
    def bzip_blocks(parts):
        out = []
        for i, part in enumerate(parts):
            comp = bz2.compress(part)
            size = -len(comp) if i == len(parts) - 1 else len(comp)
            out.append(struct.pack('>l', size) + comp)
        return b''.join(out)

    @classmethod
    def compressed_archive(cls, messages, per_block=2):
        blocks = [cls.metadata()]
        for i in range(0, len(messages), per_block):
            blocks.append(b''.join(messages[i:i + per_block]))
        return cls.volume_header() + cls.bzip_blocks(blocks)

    @staticmethod
    def gzipped(data):
        return gzip.compress(data)


@pytest.fixture
def builder():
    """Expose the archive builder to tests."""
    return ArchiveBuilder


@pytest.fixture
def write_archive(tmp_path):
    """Write raw archive bytes to a temporary file and return its path."""
    def _write(data, name='KTST20240517_025206_V06'):
        path = tmp_path / name
        path.write_bytes(data)
        return path
    return _write


@pytest.fixture
def sample_archive():
    """Path to the real KDIX sample archive, skipping when it is not available."""
    path = get_test_data(SAMPLE_ARCHIVE, as_file_obj=False)
    if not os.path.exists(path):
        pytest.skip('sample archive {} not found; set TEST_DATA_DIR'.format(SAMPLE_ARCHIVE))
    return path


@pytest.fixture
def sample_archive_gz(sample_archive):
    path = sample_archive + '.gz'
    if not os.path.exists(path):
        pytest.skip('sample archive {}.gz not found'.format(SAMPLE_ARCHIVE))
    return path
