"""BN254 scalar field GF(r) and base field GF(q).

Uses galois library for all field arithmetic. FF is the field type of the
folded circuits; FFq is the field of the cycle circuit that re-checks their
commitment arithmetic. Vectors and matrices of witness values are galois
arrays so per-row work stays vectorised.

galois would factor p - 1 to find a primitive element on construction, which
is slow for a 254-bit prime, so the known generators are supplied instead.
"""

from typing import Iterable, List

import galois
import numpy as np
from py_ecc.optimized_bn128 import curve_order, field_modulus

# --- Field Construction ---

BN254_SCALAR_ORDER = curve_order
BN254_BASE_ORDER = field_modulus

MULTIPLICATIVE_GENERATOR = 5
BASE_MULTIPLICATIVE_GENERATOR = 3

FF = galois.GF(BN254_SCALAR_ORDER, primitive_element=MULTIPLICATIVE_GENERATOR, verify=False)
"""Scalar field of BN254; the exponent group of the commitment curve."""

FFq = galois.GF(BN254_BASE_ORDER, primitive_element=BASE_MULTIPLICATIVE_GENERATOR, verify=False)
"""Base field of BN254, which is the scalar field of Grumpkin."""

P = BN254_SCALAR_ORDER
Q = BN254_BASE_ORDER


# --- Conversions ---
# Hashing and the circuit builder work on plain ints; everything that is
# folded or committed works on galois arrays.


def to_int(value, modulus: int = P) -> int:
    """Reduce an int or field element to its canonical integer representative."""
    return int(value) % modulus


def ff_vector(values: Iterable[int], field=FF):
    """Build a 1-D field array from (possibly negative) integers."""
    return field([int(v) % field.order for v in values])


def ff_matrix(rows: Iterable[Iterable[int]], width: int = 0, field=FF):
    """Build a 2-D field array; an empty row list gives shape (0, width)."""
    rows = [[int(v) % field.order for v in row] for row in rows]
    if not rows:
        return field.Zeros((0, width))
    return field(rows)


def ints(values) -> List[int]:
    """Flatten a field array into a list of Python ints (row-major)."""
    return [int(v) for v in np.asarray(values, dtype=object).ravel()]


def powers(base, count: int, modulus: int = P) -> List[int]:
    """Return [1, base, base^2, ..., base^(count-1)] as ints mod `modulus`."""
    base = to_int(base, modulus)
    result = []
    acc = 1
    for _ in range(count):
        result.append(acc)
        acc = (acc * base) % modulus
    return result


def inverse(value, modulus: int = P) -> int:
    """Field inverse of a non-zero element."""
    value = to_int(value, modulus)
    if value == 0:
        raise ZeroDivisionError("inverse of zero")
    return pow(value, modulus - 2, modulus)


# --- Montgomery Batch Inversion ---

def batch_inverse(values):
    """Montgomery batch inversion for a 1-D field array.

    Converts N field inversions into 3N-3 multiplications + 1 inversion.
    Zero entries are left as zero (callers use this for selector-gated
    helper columns, where a zero denominator only occurs on disabled rows).

    Algorithm:
    1. Forward pass: prefix products of the non-zero entries
    2. Single inversion of the total product
    3. Backward pass: peel off individual inverses
    """
    field = type(values)
    n = len(values)
    results = field.Zeros(n)
    if n == 0:
        return results

    nonzero = [i for i in range(n) if values[i] != 0]
    if not nonzero:
        return results

    # Forward pass: compute prefix products
    cumprods = field.Zeros(len(nonzero))
    cumprods[0] = values[nonzero[0]]
    for k in range(1, len(nonzero)):
        cumprods[k] = cumprods[k - 1] * values[nonzero[k]]

    # Single inversion of the total product (only 1 expensive inversion)
    z = cumprods[-1] ** -1

    # Backward pass: extract individual inverses
    for k in range(len(nonzero) - 1, 0, -1):
        i = nonzero[k]
        results[i] = z * cumprods[k - 1]
        z = z * values[i]
    results[nonzero[0]] = z

    return results
