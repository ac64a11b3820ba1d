import numpy as np
import pint

units = pint.UnitRegistry(autoconvert_offset_to_baseunit = True)

def atleast_1d(values, value_units):
    return units.Quantity(np.atleast_1d(np.asarray(values, dtype = np.float64)), value_units)

del pint
