from collections import Counter, namedtuple
import datetime
import enum

import numpy as np
from scipy.constants import day, milli

from ._package_tools import Exporter
from ._units import atleast_1d

exporter = Exporter(globals())

METADATA_SIZE = 325888
MAX_ELEVATION_INDEX = 32

# Gate codes with a fixed meaning, decoded to 0.0 instead of through scale/offset
BELOW_THRESHOLD = 0
RANGE_FOLDED = 1

NEXRAD_EPOCH = datetime.datetime(1970, 1, 1)

@exporter.export
def nexrad_to_datetime(julian_date, ms_midnight):
    return NEXRAD_EPOCH + datetime.timedelta(seconds = (julian_date - 1) * day + ms_midnight * milli)

@exporter.export
class MomentType(enum.Enum):
    REF = b'DREF'
    VEL = b'DVEL'
    SW = b'DSW '

    @property
    def tag(self):
        return self.value

@exporter.export
class VolumeHeader(namedtuple('VolumeHeader', 'version extension_num date time site')):
    __slots__ = ()

    @property
    def datetime(self):
        return nexrad_to_datetime(self.date, self.time)

BlockPointers = namedtuple('BlockPointers', 'volume elevation radial ref vel sw')
BlockPointers.__new__.__defaults__ = (0,) * len(BlockPointers._fields)
exporter.export(BlockPointers)

@exporter.export
class MomentData(object):
    """One moment's gates for a single radial.

    ``raw`` holds the recorded 8-bit codes and ``data`` their physical values,
    in order of increasing range. Ranges are in km.
    """
    def __init__(self, kind, num_gates, first_gate, gate_interval, snr_threshold, word_size, scale, offset, raw, tover = 0., control_flags = 0):
        self.kind = kind
        self.num_gates = num_gates
        self.first_gate = first_gate
        self.gate_interval = gate_interval
        self.snr_threshold = snr_threshold
        self.tover = tover
        self.control_flags = control_flags
        self.word_size = word_size
        self.scale = scale
        self.offset = offset
        self.raw = raw
        self.data = self.decode_gates(raw, scale, offset)

    @staticmethod
    def decode_gates(raw, scale, offset):
        lut = (np.arange(256, dtype = np.float32) + np.float32(offset)) / np.float32(scale)
        lut[BELOW_THRESHOLD] = 0.
        lut[RANGE_FOLDED] = 0.
        return lut[np.asarray(raw, dtype = np.uint8)]

    @property
    def sentinel_mask(self):
        return self.raw <= RANGE_FOLDED

    def gate_ranges(self):
        return atleast_1d(self.first_gate + np.arange(self.num_gates) * self.gate_interval, 'km')

    def __len__(self):
        return len(self.data)

    def __repr__(self):
        return '{}({}, num_gates = {:d}, first_gate = {:.3f}, gate_interval = {:.3f})'.format(self.__class__.__name__, self.kind.name, self.num_gates, self.first_gate, self.gate_interval)

@exporter.export
class Radial(object):
    def __init__(self, az_num, az_angle, elev_num, elev_angle, radial_length, num_blocks, pointers):
        self.az_num = az_num
        self.az_angle = az_angle
        self.elev_num = elev_num
        self.elev_angle = elev_angle
        self.radial_length = radial_length
        self.num_blocks = num_blocks
        self.pointers = pointers
        self.moments = dict()

    @property
    def ref(self):
        return self.moments.get(MomentType.REF)

    def __repr__(self):
        return 'Radial(az_num = {:d}, az_angle = {:.2f}, elev_num = {:d}, moments = {})'.format(self.az_num, self.az_angle, self.elev_num, [m.name for m in self.moments])

@exporter.export
class Elevation(object):
    def __init__(self, index, angle = 0.):
        self.index = index
        self.angle = angle
        self.radials = []

    def azimuths(self):
        return np.array([r.az_angle for r in self.radials], dtype = np.float32)

    def reflectivity(self, masked = False):
        """Stack the reflectivity of every radial into a (radials, gates) array.

        Radials with fewer gates, or none, are padded with NaN. With ``masked``
        the padding and the below-threshold/range-folded gates are masked out.
        """
        refs = [r.ref for r in self.radials]
        ngates = max([m.num_gates for m in refs if m is not None] or [0])
        out = np.full((len(refs), ngates), np.nan, dtype = np.float32)
        mask = np.ones(out.shape, dtype = bool)
        for row, ref in enumerate(refs):
            if ref is None:
                continue
            out[row, :ref.num_gates] = ref.data
            mask[row, :ref.num_gates] = ref.sentinel_mask

        if masked:
            return np.ma.masked_array(out, mask = mask)
        return out

    def __len__(self):
        return len(self.radials)

    def __iter__(self):
        return iter(self.radials)

    def __repr__(self):
        return 'Elevation(index = {:d}, angle = {:.2f}, radials = {:d})'.format(self.index, self.angle, len(self.radials))

@exporter.export
class VolumeModel(object):
    def __init__(self, header, metadata):
        self.header = header
        self.metadata = metadata
        self._elevations = dict()
        self.num_blocks = 0
        self.message_counts = Counter()
        self.possibly_corrupt = False

    def get_or_create_elevation(self, index):
        elev = self._elevations.get(index)
        if elev is None:
            elev = self._elevations[index] = Elevation(index)
        return elev

    def elevation(self, index):
        return self._elevations[index]

    @property
    def elevations(self):
        return [self._elevations[i] for i in sorted(self._elevations)]

    def elevation_angles(self):
        return atleast_1d([e.angle for e in self.elevations], 'degree')

    @property
    def site(self):
        return self.header.site

    def __contains__(self, index):
        return index in self._elevations

    def __iter__(self):
        return iter(self.elevations)

    def __len__(self):
        return len(self._elevations)

    def __repr__(self):
        return '{}: {} elevations, {:d} radials'.format(self.header, len(self), sum(len(e) for e in self._elevations.values()))
