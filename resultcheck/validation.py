"""
validation.py - Identifier Checks
=================================
Checksum validation for national ID numbers (UINs), and the cleaning applied
to raw spreadsheet text before any check is made.

UIN Format:
-----------
    <prefix><7 digits><checksum letter>     e.g. S1234567D

- Prefix S/T : citizens and permanent residents (NRIC)
- Prefix F/G : foreigners (FIN)
- Prefix M   : foreigners, newer series (FIN)
"""

import re


UIN_PATTERN = re.compile(r'^([FGMST])([0-9]{7})([A-Z])$')

# Multiplied position-by-position with the 7 digits
UIN_WEIGHTS = (2, 7, 6, 5, 4, 3, 2)

# Checksum letter tables, indexed by (weighted sum % 11)
NRIC_CHECKSUM = 'JZIHGFEDCBA'
FIN_FG_CHECKSUM = 'XWUTRQPNMLK'
FIN_M_CHECKSUM = 'XWUTRQPNJLK'

_NON_ALNUM = re.compile(r'[^A-Z0-9]')


def clean_identifier(text: str | None) -> str:
    """
    Uppercase a cell value and strip everything except A-Z and 0-9.

    Examples:
        clean_identifier(' s1234567d ')  -> 'S1234567D'
        clean_identifier('E-123 456')    -> 'E123456'
        clean_identifier(None)           -> ''
    """
    if text is None:
        return ''
    return _NON_ALNUM.sub('', str(text).upper())


def uin_checksum(prefix: str, digits: str) -> str:
    """
    Compute the expected checksum letter for a UIN.

    Assumes prefix and digits were already checked for length and characters.

    Args:
        prefix: One of F, G, M, S, T
        digits: The 7 digit body

    Returns:
        The expected checksum letter, or '' for an unknown prefix
    """
    total = sum(int(d) * w for d, w in zip(digits, UIN_WEIGHTS))

    # The newer series are offset so they never collide with the old ones
    if prefix in ('T', 'G'):
        total += 4
    elif prefix == 'M':
        total += 3

    total %= 11

    if prefix in ('S', 'T'):
        return NRIC_CHECKSUM[total]
    if prefix in ('F', 'G'):
        return FIN_FG_CHECKSUM[total]
    if prefix == 'M':
        return FIN_M_CHECKSUM[total]
    return ''


def is_valid_uin(value: str) -> bool:
    """
    Strict UIN check: exact length, uppercase, valid checksum.

    No cleaning happens here, the loader is expected to have done it already.
    """
    if len(value) != 9:
        return False

    match = UIN_PATTERN.match(value)
    if match is None:
        return False

    prefix, digits, checksum = match.groups()
    return checksum == uin_checksum(prefix, digits)
